"""Localized greeting shown when a visitor opens an empty conversation."""

DEFAULT_GREETING_LANGUAGE = "uz"

_ONLINE = {
    "uz": "Salom! {brand} qo'llab-quvvatlash xizmati. Sizga qanday yordam bera olamiz?",
    "ru": "Здравствуйте! Служба поддержки {brand}. Чем можем помочь?",
    "en": "Hello! {brand} support service. How can we help you?",
}

_OFFLINE = {
    "uz": (
        "Salom! {brand} qo'llab-quvvatlash xizmati. Hozir operatorlar band. "
        "Xabaringizni qoldiring, tez orada javob beramiz."
    ),
    "ru": (
        "Здравствуйте! Служба поддержки {brand}. Сейчас операторы заняты. "
        "Оставьте сообщение, и мы скоро ответим."
    ),
    "en": (
        "Hello! {brand} support service. Operators are currently busy. "
        "Leave a message and we will get back to you soon."
    ),
}


def greeting_text(language: str, brand: str, operators_online: bool) -> str:
    """Greeting for *language*, falling back to Uzbek for unknown codes."""
    table = _ONLINE if operators_online else _OFFLINE
    template = table.get(language, table[DEFAULT_GREETING_LANGUAGE])
    return template.format(brand=brand)
