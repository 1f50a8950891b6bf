# clubspace/api/routes/diagnostics.py
from fastapi import APIRouter, Depends

from ...schemas.diagnostics import DiagnosticsReport
from ...services.diagnostics_service import DiagnosticsService
from ..dependencies import get_diagnostics_service

router = APIRouter(tags=["diagnostics"])


@router.get("/diagnostics", response_model=DiagnosticsReport)
async def run_diagnostics(
    service: DiagnosticsService = Depends(get_diagnostics_service),
) -> DiagnosticsReport:
    """Messaging troubleshooting checks; never fails, failures are in the report."""
    return await service.run()
