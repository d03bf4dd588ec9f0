from __future__ import annotations

import subprocess
import sys


def main():
    subprocess.run(
        [sys.executable, "-m", "orchestra.entrypoints.cli", "Summarize what the tester agent can do", "--env", "dev"],
        check=True,
    )


if __name__ == "__main__":
    main()
