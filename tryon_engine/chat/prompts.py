"""Prompt text for the decision agent and the compositing steps."""

from __future__ import annotations

from typing import Sequence

from .attachments import Attachment, Turn
from .edit_mode import EditMode

SYSTEM_INSTRUCTION = """You are an assistant that prepares AI fashion photo generations.

Your job is to decide whether there is enough information to generate a virtual model wearing specific clothes.

REQUIRED TO GENERATE:
1. Clothing (required): at least one garment attached or clearly described.
2. Model gender (required): MALE, FEMALE or NON_BINARY. Infer it from the conversation when possible.

OPTIONAL:
- Height, weight or body type, hair color, facial expression, age range.
- Pose and background are chosen by the system. Do not ask for them unless the user explicitly brings them up.

RULES:
- Only ask questions when no garment is attached or described at all. Ask at most one short batch of questions.
- Never ask again for information the user already gave.
- When garments are attached, acknowledge them and mark the request as ready.
- Write the generation prompt in English, describing the model and the photograph.

RESPONSE FORMAT (JSON only, no extra text):
Not ready:
{"ready": false, "questions": ["..."], "missingInfo": ["garment"]}

Ready:
{"ready": true, "prompt": "English prompt", "modelSpecs": {"gender": "FEMALE", "ageRange": "25-30",
 "heightCm": 170, "weightKg": 60, "hairColor": "brown", "facialExpression": "soft smile"}}
"""

DEFAULT_QUESTIONS = (
    "Por favor, me conte o que você gostaria de criar. Você pode anexar fotos das roupas ou descrevê-las.",
)
POSE_QUESTION = "Qual pose ou modelo você quer usar? Anexe uma pose ou escolha um modelo para continuarmos."

REFERENCE_DESCRIPTIONS = {
    "model": (
        "Reference image {index}: pose and identity reference. Keep this person's body pose, proportions, "
        "face and skin tone exactly."
    ),
    "improve_reference": (
        "Reference image {index}: the previous result to refine. Preserve the model identity, pose, framing "
        "and styling; only apply the requested changes."
    ),
    "garment": (
        "Reference image {index}: garment {garment}. Match its silhouette, fabric texture, seams, patterns, "
        "and colors exactly on the model."
    ),
    "background": (
        "Reference image {index}: use strictly as the background environment. Keep the model, garment, and pose "
        "unchanged while blending lighting and shadows to match this backdrop."
    ),
}

_MODE_RULES: dict[EditMode, tuple[str, ...]] = {
    EditMode.NONE: (
        "The uploaded garment references are mandatory. Reproduce their fabrics, trims, and silhouettes "
        "faithfully on the model.",
        "Align seams, waistlines, and hems naturally with the pose so the outfit looks tailored to the body.",
    ),
    EditMode.TEXT_EDIT: (
        "This is a refinement. Preserve the previously established model identity, pose, proportions, and "
        "styling; only adjust what the user described.",
    ),
    EditMode.GARMENT_SWAP: (
        "This is a garment swap. Keep the model identity, pose, framing and background from the first reference "
        "image and replace the outfit with the new garment references.",
        "Align seams, waistlines, and hems naturally with the pose so the outfit looks tailored to the body.",
    ),
    EditMode.BACKGROUND_CHANGE: (
        "This is a refinement. Preserve the previously established model identity, pose, proportions, and "
        "styling; only adjust what the user described.",
    ),
    EditMode.FULL_EDIT: (
        "This is a garment swap on an existing result. Keep the model identity and pose from the first reference "
        "image and dress the model in the new garment references.",
        "Align seams, waistlines, and hems naturally with the pose so the outfit looks tailored to the body.",
    ),
}


def build_model_description(
    *,
    gender: str | None,
    age_range: str | None = None,
    height_cm: float | None = None,
    weight_kg: float | None = None,
    hair_color: str | None = None,
    facial_expression: str | None = None,
) -> str:
    labels = {"MALE": "male", "FEMALE": "female", "NON_BINARY": "androgynous non-binary"}
    parts = [f"{labels.get(str(gender or '').upper(), 'female')} model"]
    if age_range:
        parts.append(f"aged {age_range}")
    if height_cm:
        parts.append(f"about {int(height_cm)} cm tall")
    if weight_kg:
        parts.append(f"around {int(weight_kg)} kg")
    if hair_color:
        parts.append(f"{hair_color} hair")
    if facial_expression:
        parts.append(f"{facial_expression} expression")
    return ", ".join(parts)


def build_simple_prompt(*, user_description: str, garment_count: int, has_background: bool) -> str:
    description = (user_description or "").strip().rstrip(".") or "A fashion model in a clean studio setting"
    prompt = f"Create a photorealistic fashion model image. {description}."
    if garment_count > 0:
        prompt += f" The model is wearing the provided garment{'s' if garment_count > 1 else ''}."
    if has_background:
        prompt += " Use the provided background."
    prompt += " Professional photography, studio lighting, sharp focus on clothing details."
    return prompt


def describe_reference(role: str, index: int, garment_number: int = 0) -> str:
    template = REFERENCE_DESCRIPTIONS.get(role, "Reference image {index}.")
    return template.format(index=index, garment=garment_number)


def build_step1_prompt(
    base_prompt: str,
    mode: EditMode,
    *,
    model_description: str | None,
    reference_descriptions: Sequence[str],
    background_pending: bool,
) -> str:
    lines = [base_prompt.strip()]
    if model_description and mode is EditMode.NONE:
        lines.append(f"\nModel: {model_description}.")
    rules = list(_MODE_RULES[mode])
    if background_pending:
        rules.append("Use a plain, evenly lit studio backdrop; the final background is applied in a later step.")
    lines.append("\nGARMENT & POSE RULES:")
    lines.extend(f"{idx}. {rule}" for idx, rule in enumerate(rules, start=1))
    if reference_descriptions:
        lines.append("\nREFERENCE IMAGES:")
        lines.extend(reference_descriptions)
    lines.append(
        "\nPhotography: full-body fashion portrait, 85mm lens, soft studio lighting, photorealistic "
        "e-commerce catalog quality."
    )
    return "\n".join(lines)


def build_background_prompt(background_description: str = "the scene shown in the second reference image") -> str:
    return (
        f"Change only the background of the first image to {background_description}. Keep everything else "
        "(the subject, model, garment, pose, lighting on the subject) exactly the same.\n"
        "Use the second reference image as the new background. Composite the subject from the first image onto "
        "that reference scene, matching perspective and scale.\n\n"
        "New background requirements:\n"
        "- Ensure the new background's lighting and ambiance complement the subject\n"
        "- Match shadows and light direction on the subject to the new scene\n"
        "- Maintain natural depth and perspective\n"
        "- Blend the edges seamlessly where the subject meets the new background\n"
        "- Preserve all original details of the subject\n\n"
        "The subject should appear naturally placed in the new environment, as if the photo was originally "
        "taken in that setting."
    )


def build_reasoner_context(history: Sequence[Turn], current_message: str, attachments: Sequence[Attachment]) -> str:
    lines: list[str] = []
    for turn in history:
        speaker = "User" if turn.is_user else "Assistant"
        attach_info = ""
        if turn.attachments:
            attach_info = f" [Attachments: {', '.join(a.type.value for a in turn.attachments)}]"
        lines.append(f"{speaker}: {turn.content}{attach_info}")
    current_info = ""
    if attachments:
        current_info = f"\n[Attachments in the current message: {', '.join(a.type.value for a in attachments)}]"
    return (
        "CONVERSATION HISTORY:\n"
        + ("\n".join(lines) or "(empty)")
        + "\n\nCURRENT USER MESSAGE:\n"
        + (current_message or "").strip()
        + current_info
        + "\n\nDecide whether there is enough information to generate the image. Answer with JSON as instructed."
    )
