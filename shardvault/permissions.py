"""
Permissions

Design Decision: Permission Encoding
====================================

The persisted form is a compact decimal string with one digit per resource
category (file, node, user), each digit a 1/2/4 bitmask, e.g. "777" grants
everything and "100" only allows downloading files.

In code we never pass the packed number around. It is decoded once into
named boolean flags per resource:

    file: 1 download, 2 upload, 4 delete
    node: 1 view/edit, 2 add, 4 delete
    user: 1 edit, 4 delete   (2 is unused)
"""

from dataclasses import dataclass, field

from .errors import ValidationError


@dataclass(frozen=True)
class FilePermissions:
    download: bool = False
    upload: bool = False
    delete: bool = False

    def to_digit(self) -> int:
        return (1 if self.download else 0) | (2 if self.upload else 0) | (4 if self.delete else 0)

    @classmethod
    def from_digit(cls, digit: int) -> 'FilePermissions':
        return cls(download=bool(digit & 1), upload=bool(digit & 2), delete=bool(digit & 4))


@dataclass(frozen=True)
class NodePermissions:
    edit: bool = False
    add: bool = False
    delete: bool = False

    def to_digit(self) -> int:
        return (1 if self.edit else 0) | (2 if self.add else 0) | (4 if self.delete else 0)

    @classmethod
    def from_digit(cls, digit: int) -> 'NodePermissions':
        return cls(edit=bool(digit & 1), add=bool(digit & 2), delete=bool(digit & 4))


@dataclass(frozen=True)
class UserPermissions:
    edit: bool = False
    delete: bool = False

    def to_digit(self) -> int:
        return (1 if self.edit else 0) | (4 if self.delete else 0)

    @classmethod
    def from_digit(cls, digit: int) -> 'UserPermissions':
        return cls(edit=bool(digit & 1), delete=bool(digit & 4))


@dataclass(frozen=True)
class Permissions:
    """Capabilities of one API caller, grouped by resource."""
    file: FilePermissions = field(default_factory=FilePermissions)
    node: NodePermissions = field(default_factory=NodePermissions)
    user: UserPermissions = field(default_factory=UserPermissions)

    def allows(self, resource: str, capability: str) -> bool:
        """Check a capability by name, e.g. allows('file', 'upload')."""
        flags = getattr(self, resource, None)
        if flags is None:
            return False
        return bool(getattr(flags, capability, False))


def decode_permissions(compact) -> Permissions:
    """
    Decode the persisted compact form into named flags.

    Accepts an int or a decimal string. Missing leading digits count as 0,
    so "7" only grants user permissions, just like the packed integer did.

    Raises:
        ValidationError: if the value is not a number of at most three
            digits, each between 0 and 7
    """
    text = str(compact).strip()
    if not text.isdigit() or len(text) > 3:
        raise ValidationError(f'Invalid permission value: {compact!r}')

    number = int(text)
    user_digit = number % 10
    number //= 10
    node_digit = number % 10
    number //= 10
    file_digit = number % 10

    if max(user_digit, node_digit, file_digit) > 7:
        raise ValidationError(f'Invalid permission value: {compact!r}')

    return Permissions(
        file=FilePermissions.from_digit(file_digit),
        node=NodePermissions.from_digit(node_digit),
        user=UserPermissions.from_digit(user_digit),
    )


def encode_permissions(permissions: Permissions) -> str:
    """Pack named flags back into the three-digit persisted form."""
    return (
        f"{permissions.file.to_digit()}"
        f"{permissions.node.to_digit()}"
        f"{permissions.user.to_digit()}"
    )
