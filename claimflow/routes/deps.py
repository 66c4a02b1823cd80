"""Route dependencies."""

from fastapi import Request

from claimflow.pipeline import Pipeline


def get_pipeline(request: Request) -> Pipeline:
    """The pipeline attached to the running application."""
    return request.app.state.pipeline
