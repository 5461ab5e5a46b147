"""Account database records for the live image.

Renders the four account database files (passwd, group, shadow, gshadow) for
root plus one primary user. Group membership policy is fixed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

ROOT_NAME = "root"
ROOT_HOME = "/root"
LOGIN_SHELL = "/usr/bin/bash"
PRIMARY_UID = 1000
PRIMARY_GID = 1000

# Last password change, days since the epoch
PASSWORD_LAST_CHANGED = 14871

LOCKED_GROUP_PASSWORD = "!*"

# (name, gid); the primary user is a member of every one of these
SUPPLEMENTARY_GROUPS: tuple[tuple[str, int], ...] = (
    ("sys", 3),
    ("adm", 4),
    ("wheel", 10),
    ("log", 18),
    ("network", 90),
    ("floppy", 94),
    ("scanner", 96),
    ("power", 98),
    ("uucp", 810),
    ("audio", 820),
    ("lp", 830),
    ("rfkill", 840),
    ("video", 850),
    ("storage", 860),
    ("optical", 870),
    ("sambashare", 880),
    ("users", 985),
)


@dataclass
class AccountRecord:
    """One passwd/shadow entry."""

    name: str
    uid: int
    gid: int
    home: str
    password_hash: str
    shell: str = LOGIN_SHELL
    gecos: str = ""

    def passwd_line(self) -> str:
        return (
            f"{self.name}:x:{self.uid}:{self.gid}:{self.gecos}:{self.home}:{self.shell}"
        )

    def shadow_line(self) -> str:
        return f"{self.name}:{self.password_hash}:{PASSWORD_LAST_CHANGED}::::::"


@dataclass
class GroupRecord:
    """One group/gshadow entry."""

    name: str
    gid: int
    members: list[str] = field(default_factory=list)

    def group_line(self) -> str:
        return f"{self.name}:x:{self.gid}:{','.join(self.members)}"

    def gshadow_line(self) -> str:
        return f"{self.name}:{LOCKED_GROUP_PASSWORD}::{','.join(self.members)}"


def build_accounts(
    username: str,
    user_hash: str,
    root_hash: str,
) -> list[AccountRecord]:
    """Build the root and primary user account records."""
    return [
        AccountRecord(
            name=ROOT_NAME,
            uid=0,
            gid=0,
            home=ROOT_HOME,
            password_hash=root_hash,
            gecos=ROOT_NAME,
        ),
        AccountRecord(
            name=username,
            uid=PRIMARY_UID,
            gid=PRIMARY_GID,
            home=f"/home/{username}",
            password_hash=user_hash,
        ),
    ]


def build_groups(username: str) -> list[GroupRecord]:
    """Build the group records: root, the supplementary set, the user's own."""
    groups = [GroupRecord(name=ROOT_NAME, gid=0, members=[ROOT_NAME])]
    groups.extend(
        GroupRecord(name=name, gid=gid, members=[username])
        for name, gid in SUPPLEMENTARY_GROUPS
    )
    groups.append(GroupRecord(name=username, gid=PRIMARY_GID))
    return groups


def _render(lines: list[str]) -> str:
    return "\n".join(lines) + "\n"


def render_passwd(accounts: list[AccountRecord]) -> str:
    return _render([account.passwd_line() for account in accounts])


def render_shadow(accounts: list[AccountRecord]) -> str:
    return _render([account.shadow_line() for account in accounts])


def render_group(groups: list[GroupRecord]) -> str:
    return _render([group.group_line() for group in groups])


def render_gshadow(groups: list[GroupRecord]) -> str:
    return _render([group.gshadow_line() for group in groups])


def render_hosts(hostname: str) -> str:
    """Render /etc/hosts with loopback entries for the image hostname."""
    return _render(
        [
            "127.0.0.1   localhost",
            "::1         localhost",
            f"127.0.1.1   {hostname}.localdomain {hostname}",
        ]
    )


__all__ = [
    "PRIMARY_GID",
    "PRIMARY_UID",
    "SUPPLEMENTARY_GROUPS",
    "AccountRecord",
    "GroupRecord",
    "build_accounts",
    "build_groups",
    "render_group",
    "render_gshadow",
    "render_hosts",
    "render_passwd",
    "render_shadow",
]
