"""Tests for drift detection."""

from dotvault.drift import DriftDetector, compare_remote


def test_no_state_file_is_not_an_error(manifest, store, backend):
    report = DriftDetector(manifest, store).check()

    assert report.available is False
    assert not report.has_drift
    assert backend.calls == []


def test_quick_check_categories(engine, manifest, store, backend):
    manifest.get("Git-Config").local_path.write_text("[user]\n")
    manifest.get("Zshrc").local_path.write_text("zsh\n")
    engine.sync([manifest.get("Git-Config"), manifest.get("Zshrc")])
    backend.calls.clear()

    manifest.get("Git-Config").local_path.write_text("[user]\nname = me\n")
    manifest.get("Zshrc").local_path.unlink()
    starship = manifest.get("Starship").local_path
    starship.parent.mkdir(parents=True)
    starship.write_text("new\n")

    report = DriftDetector(manifest, store).check()

    assert report.available
    assert report.changed == ["Git-Config"]
    assert report.missing == ["Zshrc"]
    assert report.untracked == ["Starship"]
    assert report.has_drift
    # Quick drift never touches the vault
    assert backend.calls == []


def test_in_sync(engine, manifest, store):
    manifest.get("Zshrc").local_path.write_text("zsh\n")
    engine.sync([manifest.get("Zshrc")])

    report = DriftDetector(manifest, store).check()

    assert report.in_sync == ["Zshrc"]
    assert not report.has_drift


def test_corrupt_state_degrades(manifest, store, paths):
    paths.state_file.parent.mkdir(parents=True)
    paths.state_file.write_text("garbage")
    manifest.get("Zshrc").local_path.write_text("zsh\n")

    report = DriftDetector(manifest, store).check()

    assert report.available
    assert report.untracked == ["Zshrc"]


def test_compare_remote(manifest, backend):
    manifest.get("Git-Config").local_path.write_text("same\n")
    manifest.get("Zshrc").local_path.write_text("local\n")
    backend.entries[""] = {
        "Git-Config": "same\n",
        "Zshrc": "remote\n",
        "Starship": "only in vault\n",
    }

    report = compare_remote(manifest, backend)

    assert report.in_sync == ["Git-Config"]
    assert report.changed == ["Zshrc"]
    assert report.missing == ["Starship"]


def test_unreadable_file_does_not_abort_the_check(engine, manifest, store):
    manifest.get("Git-Config").local_path.write_text("[user]\n")
    manifest.get("Zshrc").local_path.write_text("zsh\n")
    engine.sync([manifest.get("Git-Config"), manifest.get("Zshrc")])

    # Not valid UTF-8
    manifest.get("Zshrc").local_path.write_bytes(b"\xff\xfe\x00binary")

    report = DriftDetector(manifest, store).check()

    assert report.unreadable == ["Zshrc"]
    assert report.in_sync == ["Git-Config"]
    assert report.has_drift


def test_compare_remote_skips_unreadable(manifest, backend):
    manifest.get("Zshrc").local_path.write_bytes(b"\xff\xfe")
    backend.entries[""] = {"Zshrc": "remote\n"}

    report = compare_remote(manifest, backend)

    assert report.unreadable == ["Zshrc"]
    assert report.changed == []
