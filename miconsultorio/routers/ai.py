from fastapi import APIRouter, Depends

from .. import schemas
from ..deps import ok, require_feature
from ..services.ai import suggest_treatment

router = APIRouter(prefix="/ai", tags=["ai"])


@router.post("/suggest-treatment", dependencies=[Depends(require_feature("integraciones"))])
def suggest(req: schemas.TreatmentRequest):
    return ok(suggest_treatment(req), "Sugerencias generadas exitosamente")
