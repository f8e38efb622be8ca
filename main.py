#!/usr/bin/env python3
"""
Run the admission gate locally.

Requires the package to be installed (`pip install -e .`).
"""


def main():
    """Run the admission gate server."""
    import uvicorn
    from admission_gate.main import app

    print("Starting admission gate locally...")
    print("Access at: http://localhost:8000")
    print("Health check: http://localhost:8000/health")

    uvicorn.run(
        app,
        host="127.0.0.1",
        port=8000,
        log_level="debug",
        reload=False
    )


if __name__ == "__main__":
    main()
