"""Run local environment checks for pfloc."""

import os
import platform
import sys
from pathlib import Path


def _ok(flag: bool) -> str:
    return "PASS" if flag else "FAIL"


def _warn(flag: bool) -> str:
    return "PASS" if flag else "WARN"


def _can_write(path: Path) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        probe = path.parent / ".pfloc_write_test"
        probe.write_text("ok", encoding="utf-8")
        probe.unlink(missing_ok=True)
        return True
    except OSError:
        return False


def main() -> int:
    root = Path(__file__).resolve().parent
    print("pfloc Doctor")
    print(f"- OS: {platform.system()} {platform.release()}")
    print(f"- Python: {platform.python_version()} ({sys.executable})")

    py_ok = sys.version_info >= (3, 8)
    print(f"[{_ok(py_ok)}] Python >= 3.8")
    if not py_ok:
        return 1

    try:
        import pygame  # noqa: F401
        pg_ok = True
    except ImportError:
        pg_ok = False
    print(f"[{_ok(pg_ok)}] pygame available")

    headless = os.environ.get("SDL_VIDEODRIVER") == "dummy"
    print(f"[{_warn(not headless)}] display driver: {os.environ.get('SDL_VIDEODRIVER', 'default')}")

    required = [
        root / "main.py",
        root / "pfloc" / "config.py",
        root / "pfloc" / "particle_filter.py",
    ]
    files_ok = all(p.exists() for p in required)
    print(f"[{_ok(files_ok)}] core files present")
    if not files_ok:
        for p in required:
            if not p.exists():
                print(f"       Missing: {p}")

    try:
        from pfloc.config import config_path, load_config, maps_dir, map_name

        cfg = load_config()
        mdir = Path(maps_dir(cfg))
        cfg_path = Path(config_path())
        default_map = mdir / f"{map_name(cfg)}.txt"
    except ImportError:
        mdir = root / "maps"
        cfg_path = root / "config.json"
        default_map = mdir / "loop.txt"
    maps_found = mdir.exists() and any(mdir.glob("*.txt"))
    print(f"[{_ok(maps_found)}] maps found in {mdir}")
    print(f"[{_warn(default_map.exists())}] default map {default_map.name}")

    writable = _can_write(cfg_path)
    print(f"[{_ok(writable)}] writable config path available")

    all_ok = py_ok and pg_ok and files_ok and maps_found and writable
    if all_ok:
        print("All checks passed.")
        return 0
    print("One or more checks failed.")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
