"""Tests for onion key persistence."""

from pathlib import Path

import pytest

from onionctl.errors import PersistenceError
from onionctl.onion.keyfile import (
    parse_key_line,
    read_key_file,
    set_aside_key_file,
    write_key_file,
)
from onionctl.onion.models import OnionKey


class TestKeyFile:
    """Tests for read_key_file and write_key_file."""

    def test_round_trip(self, tmp_path: Path) -> None:
        """Test a written key reads back identically."""
        key_file = tmp_path / "onion.key"
        write_key_file(key_file, OnionKey("ED25519-V3", "XYZ"))

        assert key_file.read_text() == "ED25519-V3:XYZ"
        assert read_key_file(key_file) == OnionKey("ED25519-V3", "XYZ")

    def test_owner_only(self, tmp_path: Path) -> None:
        """Test the key file is created with mode 0600."""
        key_file = tmp_path / "onion.key"
        write_key_file(key_file, OnionKey("ED25519-V3", "XYZ"))
        assert key_file.stat().st_mode & 0o777 == 0o600

    def test_overwrite(self, tmp_path: Path) -> None:
        """Test writing replaces an existing key and leaves no temp file."""
        key_file = tmp_path / "onion.key"
        write_key_file(key_file, OnionKey("ED25519-V3", "OLD"))
        write_key_file(key_file, OnionKey("ED25519-V3", "NEW"))

        assert read_key_file(key_file) == OnionKey("ED25519-V3", "NEW")
        assert [p.name for p in tmp_path.iterdir()] == ["onion.key"]

    def test_missing(self, tmp_path: Path) -> None:
        """Test a missing file reads as no key."""
        assert read_key_file(tmp_path / "onion.key") is None

    def test_trailing_newline(self, tmp_path: Path) -> None:
        """Test files edited by hand with a trailing newline still parse."""
        key_file = tmp_path / "onion.key"
        key_file.write_text("ED25519-V3:XYZ\n")
        assert read_key_file(key_file) == OnionKey("ED25519-V3", "XYZ")

    def test_base64_padding_kept(self) -> None:
        """Test only the first colon splits type from material."""
        key = parse_key_line("ED25519-V3:ab:cd==")
        assert key == OnionKey("ED25519-V3", "ab:cd==")

    @pytest.mark.parametrize("content", ["", "ED25519-V3", ":XYZ", "ED25519-V3:"])
    def test_malformed(self, tmp_path: Path, content: str) -> None:
        """Test malformed content raises PersistenceError."""
        key_file = tmp_path / "onion.key"
        key_file.write_text(content)
        with pytest.raises(PersistenceError):
            read_key_file(key_file)

    def test_unwritable(self, tmp_path: Path) -> None:
        """Test write failures raise PersistenceError."""
        with pytest.raises(PersistenceError):
            write_key_file(tmp_path / "no-such-dir" / "onion.key", OnionKey("ED25519-V3", "XYZ"))

    def test_non_ascii_key(self, tmp_path: Path) -> None:
        """Test a key that cannot be encoded leaves no temporary file behind."""
        key_file = tmp_path / "onion.key"
        with pytest.raises(PersistenceError):
            write_key_file(key_file, OnionKey("ED25519-V3", "ab�cd"))
        assert not key_file.exists()
        assert not (tmp_path / ".onion.key.tmp").exists()

    def test_set_aside(self, tmp_path: Path) -> None:
        """Test an unreadable key file is moved next to its original path."""
        key_file = tmp_path / "onion.key"
        key_file.write_text("garbage")

        aside = set_aside_key_file(key_file)

        assert aside == tmp_path / "onion.key.unreadable"
        assert aside.read_text() == "garbage"
        assert not key_file.exists()

    def test_set_aside_missing(self, tmp_path: Path) -> None:
        """Test moving a file that is gone raises PersistenceError."""
        with pytest.raises(PersistenceError):
            set_aside_key_file(tmp_path / "onion.key")
