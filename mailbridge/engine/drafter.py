import asyncio
import logging
import re
from typing import Any, Dict, Optional

from mailbridge.adapters.base import MailMessage
from mailbridge.api.errors import ApiError

from .nlp_engine import MistralAPIError, MistralEngine
from .prompts import (
    CATEGORY_CONTEXT,
    DRAFT_SYSTEM_PROMPT,
    DRAFT_USER_PROMPT,
    END_DELIMITER,
    EXAMPLE_CONTEXT,
    FORMAT_STYLE_PROMPTS,
    REPLY_SYSTEM_PROMPT,
    REPLY_USER_PROMPT,
    SIGNATURE_HTML,
    SIGNATURE_VERBATIM,
    SYSTEM_DELIMITER,
    USER_DELIMITER,
    WRITING_STYLE_PROMPTS,
)
from .sanitizer import (
    MAX_ADDITIONAL_CONTEXT_LENGTH,
    MAX_EXAMPLE_REPLY_LENGTH,
    is_valid_output,
    sanitize_input,
    strip_delimiters,
    validate_category_name,
)

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = (
    "full_name, title, email_signature, phone, mobile, website, "
    "signature_logo_url, signature_font, signature_color"
)
DEFAULT_SIGNATURE_FONT = "Arial, sans-serif"
DEFAULT_SIGNATURE_COLOR = "#333333"
DEFAULT_WRITING_STYLE = "professional"
DEFAULT_FORMAT_STYLE = "concise"
MAX_INCOMING_BODY_LENGTH = 3000
MAX_CATEGORY_NAME_LENGTH = 100

_LABEL_PREFIX = re.compile(r"^\d+:\s*")

_CONTACT_ROW = (
    '<tr><td style="padding: 2px 0; vertical-align: middle;">'
    '<span style="font-size: 14px;">{icon}</span></td>'
    '<td style="padding: 2px 0 2px 8px; vertical-align: middle;">{content}</td></tr>'
)


def build_signature_html(profile: Dict[str, Any], user_email: Optional[str]) -> Optional[str]:
    """
    HTML signature block ("Best regards," then logo | name, title, contacts).

    Returns None when the profile has nothing to sign with.
    """
    name = profile.get("full_name")
    title = profile.get("title")
    phone = profile.get("phone")
    mobile = profile.get("mobile")
    website = profile.get("website")
    logo_url = profile.get("signature_logo_url")
    font = profile.get("signature_font") or DEFAULT_SIGNATURE_FONT
    color = profile.get("signature_color") or DEFAULT_SIGNATURE_COLOR

    if not (name or phone or mobile or website or logo_url):
        return None

    contact_lines = []
    if phone:
        contact_lines.append(_CONTACT_ROW.format(icon="\U0001F4DE", content=f"Main: {phone}"))
    if mobile:
        contact_lines.append(_CONTACT_ROW.format(icon="\U0001F4F1", content=f"Mobile: {mobile}"))
    if website:
        display = re.sub(r"^https?://", "", website)
        link = f'<a href="{website}" style="color: {color}; text-decoration: none;">{display}</a>'
        contact_lines.append(_CONTACT_ROW.format(icon="\U0001F310", content=link))
    if user_email:
        link = f'<a href="mailto:{user_email}" style="color: {color}; text-decoration: none;">{user_email}</a>'
        contact_lines.append(_CONTACT_ROW.format(icon="✉️", content=link))

    logo_cell = ""
    if logo_url:
        logo_cell = (
            '<td style="vertical-align: top; padding-right: 16px; border-right: 2px solid #e5e5e5;">\n'
            f'        <img src="{logo_url}" alt="Logo" style="max-height: 80px; max-width: 120px;" />\n'
            '      </td>'
        )
    name_div = (
        f'<div style="font-size: 16px; font-weight: bold; color: {color}; margin-bottom: 2px;">{name}</div>'
        if name else ""
    )
    title_div = (
        f'<div style="font-size: 14px; color: #2563eb; margin-bottom: 8px;">{title}</div>'
        if title else ""
    )

    return f"""
<div style="font-family: {font}; font-size: 14px; color: {color};">
  <p style="margin: 0 0 12px 0;">Best regards,</p>
  <table cellpadding="0" cellspacing="0" border="0" style="font-family: {font}; font-size: 14px; color: {color};">
    <tr>
      {logo_cell}
      <td style="vertical-align: top; {'padding-left: 16px;' if logo_url else ''}">
        {name_div}
        {title_div}
        <table cellpadding="0" cellspacing="0" border="0" style="font-size: 13px; color: {color};">
          {''.join(contact_lines)}
        </table>
      </td>
    </tr>
  </table>
</div>"""


def signature_instruction(profile: Optional[Dict[str, Any]], user_email: Optional[str]) -> str:
    profile = profile or {}
    if profile.get("email_signature"):
        return SIGNATURE_VERBATIM.format(signature=profile["email_signature"])
    generated = build_signature_html(profile, user_email)
    if generated:
        return SIGNATURE_HTML.format(signature=generated)
    return ""


class EmailDrafter:
    """
    Sample-reply generation for a category, used as the auto-reply template.

    Free-text inputs are sanitised before prompt assembly and the model's
    output is checked for instruction leakage afterwards.
    """

    def __init__(self, engine: MistralEngine, model: str = "mistral-large-latest"):
        self.engine = engine
        self.model = model

    def build_prompts(self, category: str, writing_style: str, format_style: str,
                      example_reply: str, additional_context: str,
                      profile: Optional[Dict[str, Any]], user_email: Optional[str]):
        example_context = EXAMPLE_CONTEXT.format(example=example_reply) if example_reply else ""
        system_prompt = DRAFT_SYSTEM_PROMPT.format(
            system_delimiter=SYSTEM_DELIMITER,
            user_delimiter=USER_DELIMITER,
            end_delimiter=END_DELIMITER,
            style_prompt=WRITING_STYLE_PROMPTS[writing_style],
            format_prompt=FORMAT_STYLE_PROMPTS[format_style],
            category=category,
            category_context=CATEGORY_CONTEXT.get(category, ""),
            example_context=example_context,
            signature_instruction=signature_instruction(profile, user_email),
        )
        user_prompt = DRAFT_USER_PROMPT.format(
            user_delimiter=USER_DELIMITER,
            end_delimiter=END_DELIMITER,
            category=category,
            additional_context=(
                f"Additional context provided by user: {additional_context}" if additional_context else ""
            ),
        )
        return system_prompt, user_prompt

    async def draft_async(self, request: Dict[str, Any], profile: Optional[Dict[str, Any]],
                          user_email: Optional[str]) -> Dict[str, Any]:
        """
        Args:
            request: categoryName, writingStyle, formatStyle, exampleReply, additionalContext
            profile: user_profiles row (PROFILE_COLUMNS) or None
            user_email: caller's login email, shown in the generated signature

        Returns:
            {success, draft, category, writingStyle}
        """
        category = validate_category_name(request.get("categoryName"))
        writing_style = request.get("writingStyle")
        if writing_style not in WRITING_STYLE_PROMPTS:
            writing_style = DEFAULT_WRITING_STYLE
        format_style = request.get("formatStyle")
        if format_style not in FORMAT_STYLE_PROMPTS:
            format_style = DEFAULT_FORMAT_STYLE

        example_reply = sanitize_input(request.get("exampleReply"), MAX_EXAMPLE_REPLY_LENGTH)
        additional_context = sanitize_input(request.get("additionalContext"), MAX_ADDITIONAL_CONTEXT_LENGTH)

        logger.info(f"[DRAFT] Category: {category}, Style: {writing_style}, Format: {format_style}")

        if not self.engine.client:
            logger.error("[DRAFT] MISTRAL_API_KEY is not configured")
            raise ApiError("AI API key not configured", 500)

        system_prompt, user_prompt = self.build_prompts(
            category, writing_style, format_style, example_reply, additional_context, profile, user_email
        )

        try:
            draft = await self.engine.generate_text_async(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                model=self.model,
            )
        except MistralAPIError as e:
            if e.status_code == 429:
                logger.error("[DRAFT] Rate limit exceeded")
                raise ApiError("Rate limit exceeded. Please try again later.", 429)
            if e.status_code == 402:
                logger.error("[DRAFT] Payment required")
                raise ApiError("AI credits exhausted. Please add credits to continue.", 402)
            logger.error(f"[DRAFT] AI gateway error: {e}")
            raise ApiError("Failed to generate email draft", 500)

        if not is_valid_output(draft):
            logger.warning("[DRAFT] Output failed format validation, stripping delimiters")
            draft = strip_delimiters(draft)

        logger.info("[OK] [DRAFT] Email draft generated")
        return {
            "success": True,
            "draft": draft,
            "category": category,
            "writingStyle": writing_style,
        }

    def build_reply_prompts(self, message: MailMessage, category: str,
                            writing_style: str, format_style: str):
        # the incoming body is untrusted; it must not close the user block early
        body = strip_delimiters(message.body or "")[:MAX_INCOMING_BODY_LENGTH]
        system_prompt = REPLY_SYSTEM_PROMPT.format(
            system_delimiter=SYSTEM_DELIMITER,
            user_delimiter=USER_DELIMITER,
            end_delimiter=END_DELIMITER,
            style_prompt=WRITING_STYLE_PROMPTS[writing_style],
            format_prompt=FORMAT_STYLE_PROMPTS[format_style],
            category=category,
            category_context=CATEGORY_CONTEXT.get(category, ""),
        )
        user_prompt = REPLY_USER_PROMPT.format(
            user_delimiter=USER_DELIMITER,
            end_delimiter=END_DELIMITER,
            sender=strip_delimiters(message.sender),
            subject=strip_delimiters(message.subject),
            body=body,
        )
        return system_prompt, user_prompt

    async def reply_async(self, message: MailMessage, category_name: str,
                          writing_style: Optional[str],
                          format_style: str = DEFAULT_FORMAT_STYLE) -> Optional[str]:
        """
        Reply body (plain text, no signature) for one incoming email.

        Returns None when the model is unavailable or fails; the caller counts
        that as a per-message error and moves on.
        """
        # organisation categories may be custom, so no ALLOWED_CATEGORIES fallback here
        category = sanitize_input(_LABEL_PREFIX.sub("", category_name or ""), MAX_CATEGORY_NAME_LENGTH) or "General"
        if writing_style not in WRITING_STYLE_PROMPTS:
            writing_style = DEFAULT_WRITING_STYLE
        if format_style not in FORMAT_STYLE_PROMPTS:
            format_style = DEFAULT_FORMAT_STYLE

        if not self.engine.client:
            logger.error("[DRAFT] MISTRAL_API_KEY is not configured")
            return None

        system_prompt, user_prompt = self.build_reply_prompts(message, category, writing_style, format_style)
        logger.info(f"[DRAFT] Reply for message {message.id}, style: {writing_style}, format: {format_style}")

        try:
            reply = await self.engine.generate_text_async(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                model=self.model,
            )
        except MistralAPIError as e:
            logger.error(f"[DRAFT] Reply generation failed for {message.id}: {e}")
            return None

        reply = strip_delimiters(reply).strip()
        return reply or None

    def reply(self, message: MailMessage, category_name: str,
              writing_style: Optional[str], format_style: str = DEFAULT_FORMAT_STYLE) -> Optional[str]:
        """Synchronous wrapper for the sync route handlers."""
        return asyncio.run(self.reply_async(message, category_name, writing_style, format_style))
