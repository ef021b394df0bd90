"""Unit tests for path derivation helpers."""

from pathlib import Path

import pytest

from deployer.errors import WorkspaceError
from deployer.paths import derive_domain, safe_join, slugify


class TestSlugify:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("My Cool Site!", "my-cool-site"),
            ("demo", "demo"),
            ("../../etc", "etc"),
            ("  --Portfolio 2024--  ", "portfolio-2024"),
            ("", "site"),
            ("!!!", "site"),
        ],
    )
    def test_slugify(self, name, expected):
        assert slugify(name) == expected

    def test_slug_length_is_capped(self):
        slug = slugify("a" * 100)
        assert len(slug) == 63


class TestSafeJoin:
    def test_joins_inside_root(self, tmp_path):
        assert safe_join(tmp_path, "abc") == tmp_path.resolve() / "abc"

    @pytest.mark.parametrize("part", ["..", "../other", "/etc", ".", "a/../.."])
    def test_rejects_escape(self, tmp_path, part):
        with pytest.raises(WorkspaceError):
            safe_join(tmp_path, part)

    def test_rejects_symlink_escape(self, tmp_path):
        root = tmp_path / "root"
        root.mkdir()
        (root / "link").symlink_to(tmp_path)
        with pytest.raises(WorkspaceError):
            safe_join(root, "link")

    def test_accepts_path_objects(self, tmp_path):
        assert safe_join(Path(tmp_path), "a", "b").parts[-2:] == ("a", "b")


class TestDeriveDomain:
    def test_uses_first_segment_of_uuid(self):
        domain = derive_domain("My Site", "3f2a9c1e-0b7d-4e55-9a61-2c8f0d4b7e10", "madahost.dev")
        assert domain == "my-site-3f2a9c1e.madahost.dev"

    def test_falls_back_to_timestamp(self):
        domain = derive_domain("demo", "---", "madahost.dev", now=1.0)
        assert domain == "demo-rs.madahost.dev"

    def test_suffix_dots_are_trimmed(self):
        assert derive_domain("demo", "42", ".madahost.dev.") == "demo-42.madahost.dev"
