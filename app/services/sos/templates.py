"""
Emergency email rendering.

Kept free of I/O so the exact subject/body a contact receives can be tested
directly.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from html import escape

from app.models.domain.sos_domain import Location

TEST_SUBJECT_PREFIX = "[TEST] "


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def _location_lines(location: Location | None) -> tuple[str, str]:
    """HTML and plain-text renderings of where the user is."""
    if location is None:
        return "<p>Location unavailable</p>", "Location unavailable"

    accuracy = f" (±{round(location.accuracy)}m accuracy)" if location.accuracy is not None else ""
    coords = f"{location.lat:.6f}, {location.lng:.6f}{accuracy}"
    link = location.maps_link()

    html_parts = []
    text_parts = []
    if location.address:
        html_parts.append(f"<p>{escape(location.address)}</p>")
        text_parts.append(location.address)
    html_parts.append(
        f'<p><strong>📍 <a href="{link}" target="_blank" style="color: #ef4444;">View on Google Maps →</a></strong></p>'
    )
    html_parts.append(f"<p><small>Coordinates: {coords}</small></p>")
    text_parts.append(f"Map: {link}")
    text_parts.append(f"Coordinates: {coords}")
    return "\n".join(html_parts), "\n".join(text_parts)


def render_emergency_email(
    user_name: str,
    location: Location | None,
    *,
    triggered_at: datetime | None = None,
    is_test: bool = False,
) -> RenderedEmail:
    name = user_name or "your contact"
    when = (triggered_at or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M:%S %Z").strip()
    location_html, location_text = _location_lines(location)

    subject = f"🚨 EMERGENCY ALERT - {name} needs help"
    banner_html = ""
    banner_text = ""
    if is_test:
        subject = TEST_SUBJECT_PREFIX + subject
        banner_html = (
            '<div style="background-color: #fde68a; padding: 10px; border-radius: 6px; '
            'margin-bottom: 20px; font-weight: bold; text-align: center;">'
            "THIS IS A TEST - no action is required</div>"
        )
        banner_text = "THIS IS A TEST - no action is required\n\n"

    safe_name = escape(name)
    html = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px; border: 2px solid #ef4444; border-radius: 8px;">
  {banner_html}
  <h2 style="color: #ef4444; margin-top: 0;">🚨 EMERGENCY ALERT</h2>
  <p style="font-size: 18px; font-weight: bold;">Emergency SOS activated for <strong>{safe_name}</strong></p>
  <div style="background-color: #fef2f2; padding: 15px; border-radius: 6px; margin: 20px 0;">
    <h3 style="color: #dc2626; margin-top: 0;">📍 Location Information:</h3>
    {location_html}
  </div>
  <div style="background-color: #f9fafb; padding: 15px; border-radius: 6px; margin: 20px 0;">
    <h3 style="color: #374151; margin-top: 0;">⏰ Alert Details:</h3>
    <p><strong>Time:</strong> {when}</p>
    <p><strong>Contact:</strong> {safe_name}</p>
  </div>
  <div style="background-color: #fee2e2; padding: 15px; border-radius: 6px; border-left: 4px solid #ef4444;">
    <p style="margin: 0; font-weight: bold; color: #991b1b;">⚠️ This is an automated emergency alert. Please check on {safe_name} immediately.</p>
  </div>
  <p style="margin-top: 20px; font-size: 14px; color: #6b7280;">Sent by ICE SOS Emergency System</p>
</div>
""".strip()

    text = (
        f"{banner_text}EMERGENCY ALERT\n"
        f"Emergency SOS activated for {name}.\n\n"
        f"{location_text}\n\n"
        f"Time: {when}\n\n"
        f"This is an automated emergency alert. Please check on {name} immediately."
    )
    return RenderedEmail(subject=subject, html=html, text=text)


def family_alert_message(user_name: str, location: Location | None, *, sharing_paused: bool) -> str:
    if sharing_paused or location is None:
        return f"🚨 EMERGENCY: {user_name} needs help"
    return f"🚨 EMERGENCY: {user_name} needs help at {location.address or 'their location'}"
