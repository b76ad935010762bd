INSURER_WIDTH = 4
CARD_WIDTH = 13


def canonical_wallet(health_insurer: str, card_number: str) -> str:
    """
    Build the fixed-width wallet: insurer padded to 4 digits followed by the
    card number padded to 13 digits.
    """
    return f"{str(health_insurer).rjust(INSURER_WIDTH, '0')}{str(card_number).rjust(CARD_WIDTH, '0')}"


def directory_query_id(wallet: str) -> str:
    """
    The directory's detail endpoint wants the card part only, without padding.
    """
    return str(wallet)[-CARD_WIDTH:].lstrip("0")
