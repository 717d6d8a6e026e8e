# Scores a freshly created contact. Must stay pure: no clock, randomness or I/O.


def process(contact):
    score = 0
    signals = []

    size = contact.get("company_size", 0)
    if size > 500:
        score += 50
        signals.append("enterprise")
    elif size > 100:
        score += 30
        signals.append("mid_market")
    elif size > 20:
        score += 10
        signals.append("smb")

    title = contact.get("title", "")
    if contains(title, "CEO") or contains(title, "CTO") or contains(title, "VP"):
        score += 40
        signals.append("executive")
    elif contains(title, "Director") or contains(title, "Manager"):
        score += 20
        signals.append("manager")

    if contact.get("industry") in ("technology", "finance"):
        score += 15
        signals.append("target_industry")

    return {
        "contact_id": contact.get("id"),
        "email": contact.get("email"),
        "score": score,
        "signals": signals,
    }
