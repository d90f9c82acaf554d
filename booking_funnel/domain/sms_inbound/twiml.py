from xml.sax.saxutils import escape

TWIML_MEDIA_TYPE = "application/xml"


def twiml_message(message: str | None) -> str:
    if not message:
        return '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'
    return f'<?xml version="1.0" encoding="UTF-8"?><Response><Message>{escape(message)}</Message></Response>'
