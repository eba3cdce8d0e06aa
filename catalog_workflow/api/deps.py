from typing import Annotated

from fastapi import Depends, Request

from catalog_workflow.engine import WorkflowEngine

def get_engine(request: Request) -> WorkflowEngine:
    return request.app.state.engine

# Dependency for the running workflow engine
Engine = Annotated[WorkflowEngine, Depends(get_engine)]
