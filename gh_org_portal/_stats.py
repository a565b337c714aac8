# SPDX-FileCopyrightText: 2025 DB Systel GmbH
#
# SPDX-License-Identifier: Apache-2.0

"""Dataclasses and functions for reports about changes"""

import json
from dataclasses import asdict, dataclass, field


@dataclass
class LockdownChanges:  # pylint: disable=too-many-instance-attributes
    """Dataclass holding information about the lockdown of a repository"""

    dry: bool = False
    locked: bool = False
    kept_teams: list[str] = field(default_factory=list)
    removed_teams: list[str] = field(default_factory=list)
    kept_collaborators: list[str] = field(default_factory=list)
    removed_collaborators: list[str] = field(default_factory=list)
    downgraded_collaborators: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)
    log: list[str] = field(default_factory=list)

    # --------------------------------------------------------------------------
    # Teams
    # --------------------------------------------------------------------------
    def keep_team(self, team: str) -> None:
        """Team is specially permitted and keeps its access"""
        self.kept_teams.append(team)

    def remove_team(self, team: str) -> None:
        """Team has been removed from the repository"""
        self.removed_teams.append(team)

    # --------------------------------------------------------------------------
    # Collaborators
    # --------------------------------------------------------------------------
    def keep_collaborator(self, user: str) -> None:
        """Collaborator is a system account and keeps its access"""
        self.kept_collaborators.append(user)

    def remove_collaborator(self, user: str) -> None:
        """Collaborator has been removed from the repository"""
        self.removed_collaborators.append(user)

    def downgrade_collaborator(self, user: str) -> None:
        """Creator of the repository has been downgraded to read access"""
        self.downgraded_collaborators.append(user)

    def fail(self, message: str) -> None:
        """A step of the lockdown failed"""
        self.failures.append(message)

    # --------------------------------------------------------------------------
    # Output
    # --------------------------------------------------------------------------
    def changes_into_dict(self) -> dict:
        """Only the values that are not empty or False"""
        return {key: value for key, value in asdict(self).items() if value}

    def print_changes(self, orgname: str, reponame: str, output: str) -> None:
        """Print the changes, either in pretty format or as JSON"""
        if output == "json":
            print(json.dumps(self.changes_into_dict(), indent=2))
            return

        title = f"Lockdown of repository {orgname}/{reponame}"
        text = f"#-{len(title)*'-'}\n# {title}\n#-{len(title)*'-'}\n\n"
        if self.dry:
            text += "⚠️ Dry-run mode, no changes executed\n\n"
        text += "🔒 Repository has been locked down\n" if self.locked else "🔓 No lockdown\n"
        for headline, items in (
            ("✅ Kept teams", self.kept_teams),
            ("❌ Removed teams", self.removed_teams),
            ("✅ Kept collaborators", self.kept_collaborators),
            ("❌ Removed collaborators", self.removed_collaborators),
            ("🔻 Downgraded collaborators", self.downgraded_collaborators),
            ("⚠️ Failures", self.failures),
            ("📝 Log", self.log),
        ):
            if items:
                text += f"\n{headline}:\n"
                for item in items:
                    text += f"  - {item}\n"

        print(text.strip())
