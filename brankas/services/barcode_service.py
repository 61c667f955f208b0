import base64
from io import BytesIO

import barcode
from barcode.writer import ImageWriter


def barcode_data_uri(value):
    """Code128 PNG of ``value`` as a data URI for an <img> tag."""
    if not value:
        return None
    buffer = BytesIO()
    code = barcode.get('code128', value, writer=ImageWriter())
    code.write(buffer, options={'write_text': False, 'module_height': 12.0, 'quiet_zone': 2.0})
    encoded = base64.b64encode(buffer.getvalue()).decode('ascii')
    return f"data:image/png;base64,{encoded}"
