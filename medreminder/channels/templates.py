"""
Message templates for medication reminders.

One render produces the content for every channel: email subject, plain text
and HTML bodies, and the JSON payload shown by the browser service worker.
"""

from datetime import datetime, timezone, tzinfo
from html import escape
from typing import Dict, List

from medreminder.core.models import Medication, ReminderMessage
from medreminder.core.timing import resolve_medication_timing


APP_NAME = "Arogya Vault"

STRINGS: Dict[str, Dict[str, str]] = {
    'en': {
        'title': "💊 Time to take your medication",
        'subject': "💊 Time to take your medication: {name}",
        'greeting': "Hello,",
        'intro': "It's time to take your medication:",
        'dosage': "Dosage",
        'frequency': "Frequency",
        'time': "Time",
        'instructions': "Instructions",
        'scheduled': "Scheduled for",
        'as_prescribed': "as prescribed",
        'view': "View Medications",
        'footer': (
            "This is an automated reminder from {app}. Please consult your "
            "healthcare provider for medical advice."
        ),
    },
    'hi': {
        'title': "💊 दवा लेने का समय",
        'subject': "💊 दवा लेने का समय: {name}",
        'greeting': "नमस्ते,",
        'intro': "अब आपकी दवा लेने का समय है:",
        'dosage': "खुराक",
        'frequency': "आवृत्ति",
        'time': "समय",
        'instructions': "निर्देश",
        'scheduled': "निर्धारित समय",
        'as_prescribed': "निर्देशानुसार",
        'view': "दवाइयाँ देखें",
        'footer': (
            "यह {app} की ओर से एक स्वचालित अनुस्मारक है। चिकित्सा सलाह के लिए "
            "अपने डॉक्टर से परामर्श करें।"
        ),
    },
}


def _strings(language: str) -> Dict[str, str]:
    return STRINGS.get((language or 'en').lower(), STRINGS['en'])


def format_clock(time_of_day: str) -> str:
    """Format "20:00" as "8:00 PM"."""
    hours, minutes = time_of_day.split(':')
    hour = int(hours)
    suffix = 'PM' if hour >= 12 else 'AM'
    display_hour = hour % 12 or 12
    return f"{display_hour}:{minutes} {suffix}"


def format_timing(timing: List[str], language: str = 'en') -> str:
    if not timing:
        return _strings(language)['as_prescribed']
    return ', '.join(format_clock(t) for t in timing)


def render_reminder(
    medication: Medication,
    scheduled_time: datetime,
    language: str = 'en',
    tz: tzinfo = timezone.utc
) -> ReminderMessage:
    """
    Render reminder content for all channels.

    Args:
        medication: Medication the reminder belongs to
        scheduled_time: When the dose is due
        language: User language preference ('en' or 'hi')
        tz: Timezone used to display the scheduled time

    Returns:
        ReminderMessage with subject, text, HTML and push payload
    """
    s = _strings(language)
    timing_display = format_timing(resolve_medication_timing(medication), language)
    local_time = scheduled_time.astimezone(tz)
    scheduled_display = format_clock(local_time.strftime('%H:%M'))

    subject = s['subject'].format(name=medication.name)
    footer = s['footer'].format(app=APP_NAME)

    text_lines = [
        s['intro'],
        "",
        medication.name,
        f"{s['dosage']}: {medication.dosage}",
        f"{s['frequency']}: {medication.frequency}",
        f"{s['time']}: {timing_display}",
    ]
    if medication.instructions:
        text_lines.append(f"{s['instructions']}: {medication.instructions}")
    text_lines += ["", f"{s['scheduled']}: {scheduled_display}", "", footer]
    text_body = "\n".join(text_lines)

    instructions_html = (
        f'<p style="margin: 10px 0;"><strong>{s["instructions"]}:</strong> '
        f'{escape(medication.instructions)}</p>'
        if medication.instructions else ''
    )
    html_body = f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{escape(s['title'])}</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: #667eea; padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
    <h1 style="color: white; margin: 0; font-size: 24px;">{escape(s['title'])}</h1>
  </div>
  <div style="background: #f9f9f9; padding: 30px; border-radius: 0 0 10px 10px; border: 1px solid #e0e0e0;">
    <p>{s['greeting']}</p>
    <p>{s['intro']}</p>
    <div style="background: white; padding: 20px; border-radius: 8px; border-left: 4px solid #667eea;">
      <h2 style="color: #667eea; margin-top: 0;">{escape(medication.name)}</h2>
      <p style="margin: 10px 0;"><strong>{s['dosage']}:</strong> {escape(medication.dosage)}</p>
      <p style="margin: 10px 0;"><strong>{s['frequency']}:</strong> {escape(medication.frequency)}</p>
      <p style="margin: 10px 0;"><strong>{s['time']}:</strong> {timing_display}</p>
      {instructions_html}
    </div>
    <p style="font-size: 14px; color: #666;">{s['scheduled']}: {scheduled_display}</p>
    <p style="font-size: 12px; color: #999;">{escape(footer)}</p>
  </div>
</body>
</html>"""

    push_body = f"{medication.name} - {medication.dosage}"
    if medication.instructions:
        push_body += f"\n{medication.instructions}"

    push_payload = {
        'title': s['title'],
        'body': push_body,
        'icon': '/favicon.ico',
        'badge': '/favicon.ico',
        'tag': f"medication-{medication.id}",
        'requireInteraction': False,
        'data': {
            'type': 'medication_reminder',
            'medicationId': medication.id,
            'medicationName': medication.name,
            'scheduledTime': scheduled_time.isoformat(),
            'url': '/medications',
        },
        'actions': [{'action': 'view', 'title': s['view']}],
    }

    return ReminderMessage(
        subject=subject,
        title=s['title'],
        text_body=text_body,
        html_body=html_body,
        push_payload=push_payload
    )
