from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from .. import models, schemas
from ..deps import get_clinic_id, ok, paginated, require_admin
from ..services import users as svc
from ..services.entitlements import EntitlementGate

router = APIRouter(prefix="/users", tags=["users"])


def _out(user: models.User) -> schemas.UserOut:
    return schemas.UserOut.model_validate(user)


@router.get("")
def list_users(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    clinic_id: int = Depends(get_clinic_id),
    db: Session = Depends(get_db),
):
    items, total = svc.list_users(db, clinic_id, page=page, limit=limit)
    return paginated([_out(u) for u in items], page, limit, total)


@router.get("/doctors")
def list_doctors(clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    return ok([_out(u) for u in svc.list_by_role(db, models.UserRole.doctor, clinic_id)])


@router.get("/{user_id}")
def get_user(user_id: int, clinic_id: int = Depends(get_clinic_id), db: Session = Depends(get_db)):
    return ok(_out(svc.get_user(db, user_id, clinic_id)))


@router.post("", status_code=201, dependencies=[Depends(require_admin)])
def create_user(req: schemas.UserCreate, db: Session = Depends(get_db)):
    if req.clinic_id is not None:
        EntitlementGate(db).check_subscription_active(req.clinic_id)
    user = svc.create_user(db, req)
    return ok(_out(user), "Usuario creado exitosamente")


@router.put("/{user_id}", dependencies=[Depends(require_admin)])
def update_user(user_id: int, req: schemas.UserUpdate, db: Session = Depends(get_db)):
    return ok(_out(svc.update_user(db, user_id, req)), "Usuario actualizado exitosamente")


@router.patch("/{user_id}/status", dependencies=[Depends(require_admin)])
def set_status(user_id: int, req: schemas.UserStatusUpdate, db: Session = Depends(get_db)):
    user = svc.set_user_active(db, user_id, req.is_active)
    return ok(_out(user), "Usuario activado" if user.is_active else "Usuario desactivado")


@router.delete("/{user_id}", dependencies=[Depends(require_admin)])
def delete_user(user_id: int, db: Session = Depends(get_db)):
    svc.delete_user(db, user_id)
    return ok(message="Usuario eliminado exitosamente")
