"""Tests for the compact permission encoding."""

import pytest

from shardvault.errors import ValidationError
from shardvault.permissions import (
    FilePermissions, NodePermissions, Permissions, UserPermissions,
    decode_permissions, encode_permissions,
)


class TestDecode:

    def test_everything(self):
        permissions = decode_permissions('777')

        assert permissions == Permissions(
            file=FilePermissions(download=True, upload=True, delete=True),
            node=NodePermissions(edit=True, add=True, delete=True),
            user=UserPermissions(edit=True, delete=True),
        )

    def test_download_only(self):
        permissions = decode_permissions('100')

        assert permissions.allows('file', 'download')
        assert not permissions.allows('file', 'upload')
        assert not permissions.allows('node', 'edit')

    def test_mixed_digits(self):
        permissions = decode_permissions(652)

        assert permissions.file == FilePermissions(download=False, upload=True, delete=True)
        assert permissions.node == NodePermissions(edit=True, add=False, delete=True)
        assert permissions.user == UserPermissions(edit=False, delete=False)

    def test_missing_leading_digits(self):
        permissions = decode_permissions('5')

        assert permissions.file == FilePermissions()
        assert permissions.node == NodePermissions()
        assert permissions.user == UserPermissions(edit=True, delete=True)

    @pytest.mark.parametrize("value", ['', 'abc', '1000', '780', '-17'])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            decode_permissions(value)

    def test_unknown_resource(self):
        assert not decode_permissions('777').allows('billing', 'edit')


class TestEncode:

    def test_packs_flags(self):
        permissions = Permissions(
            file=FilePermissions(download=True, delete=True),
            node=NodePermissions(add=True),
        )
        assert encode_permissions(permissions) == '520'

    def test_user_digit_ignores_unused_bit(self):
        assert encode_permissions(decode_permissions('007')) == '005'
