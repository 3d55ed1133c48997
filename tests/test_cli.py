import logging

import pytest
from PIL import Image

from artqr.cli import main


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ARTQR_DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("ARTQR_BASE_URL", "http://x.test")
    yield
    # main() installs handlers bound to the captured stderr
    root = logging.getLogger("artqr")
    root.handlers.clear()
    root.setLevel(logging.NOTSET)


def _key(output: str) -> str:
    return next(line.split()[-1] for line in output.splitlines() if line.startswith("Key:"))


def test_shorten_list_detail_delete(capsys):
    main(["shorten", "https://example.com/one"])
    key = _key(capsys.readouterr().out)

    main(["links"])
    assert key in capsys.readouterr().out

    main(["detail", key])
    assert "https://example.com/one" in capsys.readouterr().out

    main(["delete", key])
    assert f"Deleted {key}" in capsys.readouterr().out

    with pytest.raises(SystemExit) as info:
        main(["delete", key])
    assert info.value.code == 1


def test_links_are_gated_until_unlock(capsys):
    for i in range(3):
        main(["shorten", f"https://example.com/{i}"])
    capsys.readouterr()

    main(["links"])
    assert "1 more hidden" in capsys.readouterr().out

    main(["unlock"])
    main(["links"])
    assert "hidden" not in capsys.readouterr().out


def test_render(tmp_path, capsys):
    main(["shorten", "https://example.com/render"])
    key = _key(capsys.readouterr().out)
    background = tmp_path / "bg.png"
    Image.new("RGB", (200, 200), (250, 200, 150)).save(background)
    output = tmp_path / "out" / "qr.png"

    main(["render", key, str(background), "-o", str(output), "--size", "400"])

    assert Image.open(output).size == (400, 400)
    assert f"http://x.test/s/{key}" in capsys.readouterr().out


def test_unknown_link_exits_with_error(capsys):
    with pytest.raises(SystemExit) as info:
        main(["detail", "missing1"])
    assert info.value.code == 2
    assert "Link not found" in capsys.readouterr().err


def test_verify_unreadable_image_exits_with_error(tmp_path, capsys):
    with pytest.raises(SystemExit) as info:
        main(["verify", str(tmp_path / "missing.png")])
    assert info.value.code == 2
    assert "Error:" in capsys.readouterr().err
