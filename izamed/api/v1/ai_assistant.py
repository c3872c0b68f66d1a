import tempfile
from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from izamed.api.deps import get_ai_coordinator, get_current_user
from izamed.core.config import settings
from izamed.models.user import User
from izamed.schemas.ai import AiBackendResult, DiagnosisIn, DiagnosisResult, MessageIn
from izamed.services.ai.coordinator import AiFallbackCoordinator

MAX_BYTES = settings.MAX_UPLOAD_MB * 1024 * 1024
IMAGE_SUFFIX = {"image/png": ".png", "image/jpeg": ".jpg"}

router = APIRouter(prefix="/ai-assistant", tags=["ai-assistant"])

async def _read_and_validate_image(file: UploadFile) -> bytes:
    if file.content_type not in IMAGE_SUFFIX:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Sólo PNG o JPG",
        )
    b = await file.read()
    if len(b) > MAX_BYTES:
        raise HTTPException(status_code=413, detail=f"Máximo {settings.MAX_UPLOAD_MB} MB")
    return b

@router.post("/message", response_model=AiBackendResult)
async def message(
    body: MessageIn,
    current_user: User = Depends(get_current_user),
    coordinator: AiFallbackCoordinator = Depends(get_ai_coordinator),
):
    # el rol sale del token, el cliente no lo puede pisar
    context = {**body.context, "user_role": current_user.role.value}
    return await coordinator.process(body.message, context)

@router.post("/analyze-images", response_model=AiBackendResult)
async def analyze_images(
    files: list[UploadFile] = File(...),
    context: str = Form(""),
    current_user: User = Depends(get_current_user),
    coordinator: AiFallbackCoordinator = Depends(get_ai_coordinator),
):
    if not files:
        raise HTTPException(status_code=400, detail="Subí al menos una imagen")

    # el backend lee las imágenes desde disco; las borramos al terminar
    with tempfile.TemporaryDirectory(prefix="izamed-img-") as tmp:
        paths: list[str] = []
        for i, f in enumerate(files):
            data = await _read_and_validate_image(f)
            path = Path(tmp) / f"image-{i}{IMAGE_SUFFIX[f.content_type]}"
            path.write_bytes(data)
            paths.append(str(path))
        return await coordinator.process_images(paths, context)

@router.post("/differential-diagnosis", response_model=DiagnosisResult)
async def differential_diagnosis(
    body: DiagnosisIn,
    current_user: User = Depends(get_current_user),
    coordinator: AiFallbackCoordinator = Depends(get_ai_coordinator),
):
    return await coordinator.process_differential_diagnosis(body.symptoms, body.age, body.gender)

@router.get("/status")
async def ai_status(
    run_tests: bool = False,
    current_user: User = Depends(get_current_user),
    coordinator: AiFallbackCoordinator = Depends(get_ai_coordinator),
):
    status_out = await coordinator.service_status()
    # ?run_tests=true manda un mensaje real a cada backend
    if run_tests:
        status_out["service_tests"] = await coordinator.test_all_services()
    return status_out
