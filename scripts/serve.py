from __future__ import annotations

import os

import uvicorn


def main() -> None:
    # Local entrypoint; containers run uvicorn directly against the same app path.
    uvicorn.run(
        "familytree.apps.api.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
