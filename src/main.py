"""Worker entry point for the lecture content pipeline.

Runs the queue consumer; equivalent to ``python -m src.content_pipeline.cli worker``.
"""

from src.content_pipeline.cli import main

if __name__ == "__main__":
    raise SystemExit(main(["worker"]))
