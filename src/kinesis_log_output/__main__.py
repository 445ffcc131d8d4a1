from __future__ import annotations

from kinesis_log_output.app import main

if __name__ == "__main__":
    raise SystemExit(main())
