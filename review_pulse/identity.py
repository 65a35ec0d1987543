"""Employee / maintainer / community / bot classification of GitHub logins.

The reconciliation and aggregation code never decides who is who; it is
handed an ``IdentityClassifier`` (or just its ``is_includable`` predicate).
"""

from __future__ import annotations

from collections.abc import Iterable

from review_pulse.config import WRITE_ACCESS_ASSOCIATIONS
from review_pulse.models import AuthorType

_BOT_LOGINS = frozenset({"dependabot"})


def is_bot(login: str) -> bool:
    """Return True for GitHub App accounts and conventionally named bots."""
    lowered = login.lower()
    return "[bot]" in lowered or lowered.endswith("-bot") or lowered in _BOT_LOGINS


def has_write_access(association: str | None) -> bool:
    return (association or "").upper() in WRITE_ACCESS_ASSOCIATIONS


class IdentityClassifier:
    """Classifies logins against a known employee set.

    ``allowlist`` adds logins to the employee set and ``denylist`` removes
    them; the denylist wins when a login is on both. Comparison is
    case-insensitive, as GitHub logins are.
    """

    def __init__(
        self,
        employees: Iterable[str] = (),
        allowlist: Iterable[str] = (),
        denylist: Iterable[str] = (),
    ) -> None:
        self._denied = {login.lower() for login in denylist}
        self._employees = {
            login.lower() for login in (*employees, *allowlist)
        } - self._denied

    def __len__(self) -> int:
        return len(self._employees)

    def is_employee(self, login: str | None) -> bool:
        return bool(login) and login.lower() in self._employees

    def is_bot(self, login: str) -> bool:
        return is_bot(login)

    def author_type(self, login: str, association: str | None = None) -> AuthorType:
        if self.is_bot(login):
            return "bot"
        if self.is_employee(login):
            return "employee"
        if has_write_access(association):
            return "maintainer"
        return "community"

    def is_includable(self, login: str) -> bool:
        """Whether a reviewer belongs in the reviewer table by classification."""
        return self.is_employee(login) and not is_bot(login)
