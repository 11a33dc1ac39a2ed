import pytest

from checkpoint import CheckpointStore, PortState
from config import ScanConfig
from conftest import FakeConnector, FakeProbe
from orchestrator import LocalAddressError, ScanOrchestrator, subnet_of
from ui import RecordingProgress


def make_cfg(tmp_path, **overrides):
    cfg = ScanConfig(
        subnet="10.0.0",
        start_port=1,
        end_port=20,
        max_workers=4,
        discovery_workers=16,
        out_dir=str(tmp_path),
    )
    for k, v in overrides.items():
        setattr(cfg, k, v)
    return cfg.validate()


def orchestrate(cfg, probe, connector, progress=None, **kwargs):
    return ScanOrchestrator(
        cfg,
        probe=probe,
        progress=progress or RecordingProgress(),
        port_probe=connector,
        **kwargs,
    )


def test_subnet_of():
    assert subnet_of("192.168.1.23") == "192.168.1"
    with pytest.raises(LocalAddressError):
        subnet_of("localhost")


def test_failed_probe_only_skips_that_host(tmp_path):
    probe = FakeProbe(alive={"10.0.0.5", "10.0.0.6", "10.0.0.7"}, broken={"10.0.0.5"})
    connector = FakeConnector(open={("10.0.0.6", 7)})

    summary = orchestrate(make_cfg(tmp_path), probe, connector).run()

    assert sorted(summary.hosts) == ["10.0.0.6", "10.0.0.7"]
    assert sorted(summary.completed) == ["10.0.0.6", "10.0.0.7"]
    assert {h for h, _ in connector.calls} == {"10.0.0.6", "10.0.0.7"}
    assert summary.completed["10.0.0.6"].open_ports == [7]
    assert summary.completed["10.0.0.7"].open_ports == []


def test_dead_host_is_never_scanned(tmp_path):
    probe = FakeProbe(alive={"10.0.0.6"})
    connector = FakeConnector()

    summary = orchestrate(make_cfg(tmp_path), probe, connector).run()

    assert summary.hosts == ["10.0.0.6"]
    assert connector.ports_for("10.0.0.6") == list(range(1, 21))
    assert connector.ports_for("10.0.0.5") == []
    assert not (tmp_path / "10.0.0.5.txt").exists()


def test_checkpoint_failure_is_scoped_to_one_host(tmp_path):
    (tmp_path / "10.0.0.6.txt").mkdir()
    probe = FakeProbe(alive={"10.0.0.6", "10.0.0.7"})

    summary = orchestrate(make_cfg(tmp_path), probe, FakeConnector(open={3})).run()

    assert list(summary.failed) == ["10.0.0.6"]
    assert list(summary.completed) == ["10.0.0.7"]
    loaded = CheckpointStore(str(tmp_path)).load("10.0.0.7")
    assert len(loaded) == 20
    assert loaded[3] is PortState.OPEN


def test_rows_follow_discovery_order(tmp_path):
    progress = RecordingProgress()
    probe = FakeProbe(alive={"10.0.0.2", "10.0.0.3", "10.0.0.4"})

    summary = orchestrate(make_cfg(tmp_path, end_port=5), probe, FakeConnector(), progress).run()

    rows = {h: progress.updates_for(h)[0][2] for h in summary.hosts}
    assert [rows[h] for h in summary.hosts] == sorted(rows.values())
    assert len(set(rows.values())) == 3


def test_status_lines(tmp_path):
    progress = RecordingProgress()
    probe = FakeProbe(alive={"10.0.0.6"})

    orchestrate(make_cfg(tmp_path, end_port=3), probe, FakeConnector(), progress).run()

    assert progress.messages[0] == "Scanning subnet: 10.0.0.0/24"
    assert progress.messages[1] == "Using 4 threads for scanning."
    assert "Found host: 10.0.0.6" in progress.messages
    assert "Scanning IP: 10.0.0.6" in progress.messages
    assert "Port scanning completed for range 1 to 3 on IP 10.0.0.6" in progress.messages
    assert progress.messages[-1] == "Scanning completed for all devices."


def test_no_live_hosts(tmp_path):
    progress = RecordingProgress()
    connector = FakeConnector()

    summary = orchestrate(make_cfg(tmp_path), FakeProbe(), connector, progress).run()

    assert summary.hosts == []
    assert connector.calls == []
    assert progress.messages[-1] == "No live hosts found."


def test_subnet_detected_from_local_address(tmp_path):
    cfg = make_cfg(tmp_path, subnet=None)
    orch = orchestrate(cfg, FakeProbe(), FakeConnector(), local_address=lambda: "192.168.5.23")
    assert orch.resolve_subnet() == "192.168.5"
    assert orch.run().subnet == "192.168.5"


def test_missing_local_address_aborts_run(tmp_path):
    def nowhere():
        raise LocalAddressError("no route")

    probe = FakeProbe()
    orch = orchestrate(make_cfg(tmp_path, subnet=None), probe, FakeConnector(), local_address=nowhere)
    with pytest.raises(LocalAddressError):
        orch.run()
    assert probe.calls == []


def test_second_run_resumes(tmp_path):
    probe = FakeProbe(alive={"10.0.0.6"})
    orchestrate(make_cfg(tmp_path, end_port=10), probe, FakeConnector()).run()

    again = FakeConnector()
    summary = orchestrate(make_cfg(tmp_path, end_port=15), probe, again).run()

    assert again.ports_for("10.0.0.6") == [11, 12, 13, 14, 15]
    assert summary.completed["10.0.0.6"].skipped == 10


def test_undecodable_checkpoint_still_resumes(tmp_path):
    (tmp_path / "10.0.0.6.txt").write_bytes(b"1 closed\n\xff\xfe\n2 open\n")
    connector = FakeConnector()

    summary = orchestrate(make_cfg(tmp_path, end_port=5), FakeProbe(alive={"10.0.0.6"}), connector).run()

    assert summary.failed == {}
    assert connector.ports_for("10.0.0.6") == [3, 4, 5]
    assert summary.completed["10.0.0.6"].open_ports == [2]


class ExplodingStore(CheckpointStore):
    def load(self, host):
        if host == "10.0.0.6":
            raise RuntimeError("disk on fire")
        return super().load(host)


def test_unexpected_host_error_is_scoped_to_one_host(tmp_path):
    progress = RecordingProgress()
    probe = FakeProbe(alive={"10.0.0.6", "10.0.0.7"})
    store = ExplodingStore(str(tmp_path))

    summary = orchestrate(make_cfg(tmp_path, end_port=5), probe, FakeConnector(), progress, store=store).run()

    assert list(summary.failed) == ["10.0.0.6"]
    assert "RuntimeError" in summary.failed["10.0.0.6"]
    assert list(summary.completed) == ["10.0.0.7"]
    assert progress.messages[-1].startswith("Scanning completed for all devices (1 failed: 10.0.0.6")


def test_banner_names_discovery_method(tmp_path):
    progress = RecordingProgress()
    orchestrate(make_cfg(tmp_path, end_port=1), FakeProbe(), FakeConnector(), progress).run()
    assert progress.messages[2].startswith("Host discovery: fake ")
    assert progress.messages[2].endswith(", 1s timeout")
