import pytest

from ssh_tab_stats.models import BASTION_HOSTNAME, CPUSample, DiskEntry, MemoryInfo, NetworkSample, TransportKind
from ssh_tab_stats.parsers import (
    BastionParser,
    DirectParser,
    parse_cpu_line,
    parse_df_table,
    parse_memory,
    parse_net_dev_table,
    parse_uptime,
    parser_for,
    split_lines,
)


def test_parse_cpu_line_reads_eight_counters():
    sample = parse_cpu_line("cpu  100 0 50 800 10 0 0 0 0 0")
    assert sample == CPUSample(100, 0, 50, 800, 10, 0, 0, 0)
    assert sample.total == 960
    assert sample.idle_all == 810


@pytest.mark.parametrize("line", ["cpu 1 2 3", "", "cpu  1 2 3 4 five 6 7 8"])
def test_parse_cpu_line_rejects_short_or_malformed(line):
    assert parse_cpu_line(line) is None


def test_parse_memory_and_missing_line(direct_output):
    lines = split_lines(direct_output)
    assert parse_memory(lines) == MemoryInfo(total=8232423424, used=2123456512)
    assert parse_memory(["nothing here"]) == MemoryInfo(total=0, used=0)


def test_parse_uptime():
    assert parse_uptime([" 10:15:01 up 12 days,  3:04,  2 users"]) == "12 days"
    assert parse_uptime([" 10:15:01 up 3:04,  1 user"]) == "3:04"
    assert parse_uptime(["no uptime here"]) == "N/A"


def test_parse_df_table_filters_virtual_mounts():
    table = "\n".join(
        [
            "Filesystem 1024-blocks Used Available Capacity Mounted on",
            "/dev/sda1 100 47 53 47% /",
            "tmpfs 100 0 100 0% /run",
            "udev 100 0 100 0% /dev",
            "/dev/sda15 100 6 94 6% /boot/efi",
            "/dev/sda2 100 10 90 10% /boot",
            "/dev/sdc1 100 33 67 33% /var/lib/docker",
            "short line",
        ]
    )
    assert parse_df_table(table) == [
        DiskEntry("/", 47),
        DiskEntry("/boot", 10),
    ]


def test_parse_net_dev_table_skips_loopback(net_dev):
    assert parse_net_dev_table(net_dev) == NetworkSample(rx=9876543, tx=1234567)


class TestDirectParser:
    def test_sections(self, direct_output, direct_cpu_output):
        parser = DirectParser()
        lines = split_lines(direct_output)
        assert parser.cpu(split_lines(direct_cpu_output)) == CPUSample(100, 0, 50, 800, 10, 0, 0, 0)
        assert parser.disks(lines) == [DiskEntry("/", 47), DiskEntry("/data", 72)]
        assert parser.uptime(lines) == "12 days"
        assert parser.network(lines) == NetworkSample(rx=9876543, tx=1234567)

    def test_ip_drops_loopback_and_falls_back(self):
        parser = DirectParser()
        assert parser.ip(["free output", "127.0.0.1 10.0.0.5 ::1"], "host.example") == "10.0.0.5"
        assert parser.ip(["127.0.0.1 ::1"], "host.example") == "host.example"
        assert parser.ip(["10.0.0.5 192.168.1.9"], "host.example") == "192.168.1.9"

    def test_identity_keeps_seed_hostname(self, direct_output):
        lines = split_lines(direct_output)
        assert DirectParser().identity(lines, "h", "web") == ("web", "10.0.0.5")

    def test_missing_sections(self):
        parser = DirectParser()
        assert parser.disks(["nothing"]) == []
        assert parser.network(["nothing"]) is None


class TestBastionParser:
    def test_sections(self, bastion_output):
        parser = BastionParser()
        lines = split_lines(bastion_output)
        assert parser.cpu(lines) == CPUSample(100, 0, 50, 800, 10, 0, 0, 0)
        assert parser.memory(lines) == MemoryInfo(total=4116211712, used=1061158912)
        assert parser.disks(lines) == [DiskEntry("/", 47), DiskEntry("/data", 72)]
        assert parser.uptime(lines) == "3:04"
        assert parser.network(lines) == NetworkSample(rx=123456 + 9876543, tx=123456 + 1234567)
        assert parser.identity(lines, "bastion.example", "ignored") == ("web-01", "10.0.0.7")
        assert parser.distro(lines) == ("ubuntu", "22.04")

    def test_disk_filter(self):
        lines = ["Filesystem Size Used", "", "/var/lib/x 40 /var/lib/x", "/data 77 /data", "/bad x% /bad"]
        assert BastionParser().disks(lines) == [DiskEntry("/data", 77)]

    def test_network_reads_only_two_interfaces(self):
        row = "  eth{0}: {1} 0 0 0 0 0 0 0 {2} 0 0 0 0 0 0 0"
        lines = ["Inter-|   Receive", " face |bytes"] + [
            row.format(i, 1000 * (i + 1), 10 * (i + 1)) for i in range(3)
        ]
        assert BastionParser().network(lines) == NetworkSample(rx=3000, tx=30)

    def test_no_hostname_falls_back(self):
        lines = ["cpu  1 2 3 4 5 6 7 8", "Mem: 1 2 3", "a=b"]
        parser = BastionParser()
        assert parser.identity(lines, "bastion.example", "x") == (BASTION_HOSTNAME, "bastion.example")

    def test_hostname_needs_trailing_lines(self):
        lines = ["Mem: 1 2", "web-01", "10.0.0.7", "ID=ubuntu"]
        assert BastionParser().hostname(lines) == BASTION_HOSTNAME

    def test_no_cpu_line(self):
        assert BastionParser().cpu(["Mem: 1 2 3"]) is None


def test_parser_for_selects_strategy():
    assert isinstance(parser_for(TransportKind.DIRECT), DirectParser)
    assert isinstance(parser_for(TransportKind.BASTION), BastionParser)
    assert isinstance(parser_for("bastion"), BastionParser)
