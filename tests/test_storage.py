import os
import time

import pytest

from cfpinner.errors import ConfigurationError
from cfpinner.storage import (
    StatePaths,
    blocks_need_update,
    file_age_days,
    has_recent_alive,
    load_alive,
    load_blocks,
    parse_list_lines,
    read_list_file,
    save_alive,
)

BLOCK_FILE = """\
# Cloudflare CDN IP Ranges (IPv4 only)
# Last updated: 2026-10-01 12:00:00

173.245.48.0/20
   103.21.244.0/22
2400:cb00::/32
not-a-block
104.16.0.0/33

198.51.100.7
"""


def test_parse_list_lines_strips_comments_and_blanks():
    assert parse_list_lines(["# c", "", "  a  ", "\tb\n", "#x"]) == ["a", "b"]


def test_load_blocks_skips_ipv6_and_malformed(tmp_path, caplog):
    path = tmp_path / "ranges.txt"
    path.write_text(BLOCK_FILE)

    blocks = load_blocks(path)

    assert [str(b) for b in blocks] == ["173.245.48.0/20", "103.21.244.0/22", "198.51.100.7/32"]
    assert "not-a-block" in caplog.text
    assert "104.16.0.0/33" in caplog.text


def test_load_blocks_without_usable_lines_fails(tmp_path):
    path = tmp_path / "ranges.txt"
    path.write_text("# only comments\n2400:cb00::/32\n")
    with pytest.raises(ConfigurationError):
        load_blocks(path)


def test_read_missing_file_fails(tmp_path):
    with pytest.raises(ConfigurationError):
        read_list_file(tmp_path / "missing.txt")


def test_alive_cache_round_trip(tmp_path):
    path = tmp_path / "alive.txt"

    count = save_alive(path, ["104.16.0.10", "104.16.0.9", "104.16.0.9"])

    assert count == 2
    lines = path.read_text().splitlines()
    assert lines[0].startswith("# ")
    assert any(line.startswith("# Scanned: ") for line in lines)
    assert "# Total alive: 2" in lines
    assert load_alive(path) == ["104.16.0.9", "104.16.0.10"]


def test_load_alive_drops_malformed_entries(tmp_path):
    path = tmp_path / "alive.txt"
    path.write_text("# header\n104.16.0.1\n104.16.0.0/24\nbogus\n")
    assert load_alive(path) == ["104.16.0.1"]


def test_file_age_days(tmp_path):
    path = tmp_path / "f.txt"
    assert file_age_days(path) is None
    path.write_text("x")
    old = time.time() - 3 * 86400 - 60
    os.utime(path, (old, old))
    assert file_age_days(path) == 3


def test_freshness_rules(tmp_path):
    paths = StatePaths(tmp_path)
    assert blocks_need_update(paths) is True
    assert has_recent_alive(paths) is False

    paths.ip_ranges.write_text("198.51.100.0/24\n")
    paths.alive_ips.write_text("198.51.100.1\n")
    assert blocks_need_update(paths) is False
    assert has_recent_alive(paths) is True

    stale = time.time() - 31 * 86400 - 60
    os.utime(paths.ip_ranges, (stale, stale))
    os.utime(paths.alive_ips, (stale, stale))
    assert blocks_need_update(paths) is True
    assert has_recent_alive(paths) is False


def test_state_paths_layout(tmp_path):
    paths = StatePaths(tmp_path / "state").ensure()
    assert paths.images.is_dir()
    assert paths.ip_ranges.name == "cf_cdn_ips.txt"
    assert paths.alive_ips.name == "alive_ips.txt"
