from fastapi import APIRouter, Depends

from switchboard.runtime import Runtime, get_runtime
from switchboard.schemas.transport import TransportStatus

router = APIRouter(prefix="/transport", tags=["transport"])


@router.get("/status", response_model=TransportStatus)
def transport_status(runtime: Runtime = Depends(get_runtime)):
    return runtime.supervisor.get_status()


@router.post("/connect", response_model=TransportStatus)
async def transport_connect(runtime: Runtime = Depends(get_runtime)):
    """Open the transport session. No-op when already connected."""
    await runtime.supervisor.connect()
    return runtime.supervisor.get_status()


@router.post("/disconnect", response_model=TransportStatus)
async def transport_disconnect(runtime: Runtime = Depends(get_runtime)):
    """Close the session and stop reconnecting until the next connect."""
    await runtime.supervisor.disconnect()
    return runtime.supervisor.get_status()
