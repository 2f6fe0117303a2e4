import os
from pathlib import Path

import run


def _install_fake_dotenv(monkeypatch, calls):
    def fake_load_dotenv(*, dotenv_path, override=False):
        calls.append(Path(dotenv_path).resolve())
        for line in Path(dotenv_path).read_text(encoding="utf-8").splitlines():
            if "=" not in line or line.lstrip().startswith("#"):
                continue
            key, val = (part.strip() for part in line.split("=", 1))
            if override or key not in os.environ:
                monkeypatch.setenv(key, val)
        return True

    monkeypatch.setattr(run, "_load_dotenv", fake_load_dotenv)


def test_dotenv_proxies_reach_the_crawl_input(tmp_path: Path, monkeypatch, capsys):
    (tmp_path / ".env").write_text(
        "# proxies for the crawl\nMAPCRAWL_PROXY_URLS=http://p1:8080, http://p2:8080\n", encoding="utf-8"
    )
    calls = []
    _install_fake_dotenv(monkeypatch, calls)
    monkeypatch.setattr(run, "_repo_root", lambda: tmp_path)
    monkeypatch.delenv("MAPCRAWL_PROXY_URLS", raising=False)

    assert run.main(["--search-term", "cafe", "--preflight"]) == 0

    assert calls == [(tmp_path / ".env").resolve()]
    assert "- proxies: 2" in capsys.readouterr().out


def test_real_environment_wins_over_dotenv(tmp_path: Path, monkeypatch):
    (tmp_path / ".env").write_text("MAPCRAWL_PROXY_URLS=http://from-dotenv:8080\n", encoding="utf-8")
    _install_fake_dotenv(monkeypatch, [])
    monkeypatch.setenv("MAPCRAWL_PROXY_URLS", "http://from-env:8080")

    run.load_env(root_dir=tmp_path)

    assert os.environ["MAPCRAWL_PROXY_URLS"] == "http://from-env:8080"


def test_missing_dotenv_is_a_no_op(tmp_path: Path, monkeypatch):
    def fail_load_dotenv(**_kwargs):
        raise AssertionError("should not be called")

    monkeypatch.setattr(run, "_load_dotenv", fail_load_dotenv)
    run.load_env(root_dir=tmp_path)
