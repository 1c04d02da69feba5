# miconsultorio/services/ai.py
from __future__ import annotations
import json
import logging
from typing import Optional

from openai import OpenAI, OpenAIError
from pydantic import ValidationError

from ..config import settings
from ..errors import BadRequestError
from ..schemas import TreatmentRequest, TreatmentSuggestion

logger = logging.getLogger(__name__)

_client: Optional[OpenAI] = None

_SYSTEM = (
    "Eres un asistente médico experto que ayuda a doctores a sugerir tratamientos y "
    "medicamentos basados en diagnósticos. Responde ÚNICAMENTE en formato JSON válido "
    "sin texto adicional. Usa terminología médica precisa en español."
)


def _get_client() -> OpenAI:
    global _client
    if not settings.LLM_API_KEY:
        raise BadRequestError("LLM_API_KEY no configurada")
    if _client is None:
        _client = OpenAI(api_key=settings.LLM_API_KEY, base_url=settings.LLM_BASE_URL)
        logger.info("Cliente LLM inicializado. base_url=%s model=%s", settings.LLM_BASE_URL, settings.LLM_MODEL)
    return _client


def build_prompt(req: TreatmentRequest) -> str:
    lines = [
        "Basándote en el siguiente diagnóstico médico, proporciona un plan de tratamiento "
        "y lista de medicamentos apropiados.",
        "",
        f"**Diagnóstico:** {req.diagnosis.strip()}",
        "",
    ]
    if req.gender:
        lines.append(f"**Género del paciente:** {req.gender}")
    if req.age:
        lines.append(f"**Edad del paciente:** {req.age} años")
    if req.weight:
        lines.append(f"**Peso del paciente:** {req.weight} kg")
    if req.allergies:
        lines.append(f"**Alergias medicamentosas:** {', '.join(req.allergies)}")
        lines.append("IMPORTANTE: NO sugieras medicamentos que contengan estos componentes o sus derivados.")

    lines += [
        "",
        "Responde ÚNICAMENTE con un objeto JSON con esta estructura exacta:",
        '{"tratamiento": "...", "medicamentos": [{"nombre": "...", "dosis": "...", '
        '"frecuencia": "...", "duracion": "...", "indicaciones": "..."}], '
        '"notas": "...", "advertencias": ["..."]}',
        "",
        "Considera dosis apropiadas para edad y peso, interacciones, contraindicaciones y "
        "genéricos cuando sea posible. Sugiere entre 1 y 5 medicamentos.",
        "Esta es una sugerencia para asistir al médico; el doctor debe revisar y aprobar todo.",
    ]
    return "\n".join(lines)


def parse_suggestion(content: str) -> TreatmentSuggestion:
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        raise BadRequestError("No se pudo interpretar la respuesta de la IA. Intente de nuevo.")
    if not isinstance(data, dict):
        raise BadRequestError("La respuesta de la IA no tiene el formato esperado")
    try:
        return TreatmentSuggestion(
            treatment=data.get("tratamiento") or "",
            medications=data.get("medicamentos") or [],
            notes=data.get("notas") or "",
            warnings=data.get("advertencias") or [],
        )
    except ValidationError as e:
        logger.warning("Respuesta de la IA con estructura inválida: %s", e)
        raise BadRequestError("La respuesta de la IA no tiene el formato esperado")


def suggest_treatment(req: TreatmentRequest) -> TreatmentSuggestion:
    if not req.diagnosis or not req.diagnosis.strip():
        raise BadRequestError("El diagnóstico es obligatorio para sugerencias de IA")

    client = _get_client()
    try:
        resp = client.chat.completions.create(
            model=settings.LLM_MODEL,
            temperature=0.3,
            max_tokens=1000,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": _SYSTEM},
                {"role": "user", "content": build_prompt(req)},
            ],
        )
    except OpenAIError as e:
        logger.warning("Error del servicio LLM: %s", e)
        raise BadRequestError(f"Error del servicio de IA: {e}")

    content = (resp.choices[0].message.content or "").strip()
    if not content:
        raise BadRequestError("La IA no devolvió contenido")
    return parse_suggestion(content)
