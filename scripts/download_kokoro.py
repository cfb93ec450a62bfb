from __future__ import annotations

import argparse
from pathlib import Path

from ollama_desk.audio import DEFAULT_KOKORO_REPO, ensure_kokoro_weights
from ollama_desk.exceptions import SpeechDeviceError


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch the Kokoro weights used for reading replies aloud.")
    parser.add_argument("--repo-id", default=DEFAULT_KOKORO_REPO, help=f"Hugging Face repo id (default: {DEFAULT_KOKORO_REPO}).")
    parser.add_argument("--target", type=Path, default=None, help="Directory for the weights. Defaults to ~/.cache/ollama-desk/kokoro-82m.")
    parser.add_argument("--offline", action="store_true", help="Only check that the weights are already present.")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    try:
        model_dir = ensure_kokoro_weights(args.target, repo_id=args.repo_id, allow_download=not args.offline)
    except SpeechDeviceError as exc:
        print(f"Kokoro weights unavailable: {exc}")
        return 1
    print(f"Kokoro weights are ready at {model_dir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
