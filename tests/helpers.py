def set_cookie_headers(resp):
    """Map cookie name -> raw Set-Cookie header for a response."""
    return {h.split('=', 1)[0]: h for h in resp.headers.getlist('Set-Cookie')}


def cookie_value(header):
    return header.split(';', 1)[0].split('=', 1)[1]
