# nearbuy/domain/catalog.py
"""Fixed option sets shared by several flows."""

# code -> (display title, typed synonyms); dict order is menu order and match order
SHOP_CATEGORIES = {
    "grocery": ("🛒 Grocery", ("grocery", "groceries", "kirana", "vegetable", "provision")),
    "electronics": ("📺 Electronics", ("electronic", "tv", "computer", "laptop")),
    "clothes": ("👕 Clothes", ("cloth", "dress", "textile", "garment", "fashion")),
    "medical": ("💊 Medical", ("medical", "medicine", "pharmacy", "chemist")),
    "furniture": ("🪑 Furniture", ("furniture", "chair", "table", "sofa")),
    "mobile": ("📱 Mobile", ("mobile", "phone", "smartphone")),
    "appliances": ("🔌 Appliances", ("appliance", "fridge", "washing", "mixer")),
    "hardware": ("🔧 Hardware", ("hardware", "tools", "paint", "plumbing")),
}

SHOP_CATEGORY_KEYWORDS = {code: keywords for code, (_, keywords) in SHOP_CATEGORIES.items()}

NOTIFICATION_FREQUENCIES = {
    "immediate": ("🔔 Immediately", ("immediate", "instant", "asap", "right away", "1")),
    "2hours": ("⏰ Every 2 hours", ("2 hour", "2hours", "two hour", "2")),
    "twice_daily": ("🌓 Twice a day", ("twice", "two times", "morning and evening", "3")),
    "daily": ("📅 Once a day", ("daily", "once", "day", "4")),
}

NOTIFICATION_KEYWORDS = {code: keywords for code, (_, keywords) in NOTIFICATION_FREQUENCIES.items()}


def category_title(code: str | None) -> str:
    if not code:
        return "All categories"
    entry = SHOP_CATEGORIES.get(code)
    return entry[0] if entry else code.title()


def frequency_title(code: str | None) -> str:
    entry = NOTIFICATION_FREQUENCIES.get(code or "")
    return entry[0] if entry else (code or "")


def category_rows(prefix: str = "cat_") -> list[dict]:
    return [{"id": f"{prefix}{code}", "title": title} for code, (title, _) in SHOP_CATEGORIES.items()]


def frequency_rows(prefix: str = "notif_") -> list[dict]:
    return [{"id": f"{prefix}{code}", "title": title} for code, (title, _) in NOTIFICATION_FREQUENCIES.items()]

# Seeded into fish_types on first start: (code, name, local name)
DEFAULT_FISH_TYPES = [
    ("sardine", "Sardine", "Mathi"),
    ("mackerel", "Mackerel", "Ayala"),
    ("seer", "Seer Fish", "Neymeen"),
    ("tuna", "Tuna", "Choora"),
    ("anchovy", "Anchovy", "Nethili"),
    ("prawns", "Prawns", "Chemmeen"),
    ("pomfret", "Pomfret", "Avoli"),
    ("squid", "Squid", "Koonthal"),
    ("crab", "Crab", "Njandu"),
    ("kingfish", "King Fish", "Aakoli"),
]

# Worker profile options: code -> (display title, typed synonyms)
JOB_TYPES = {
    "queue_standing": ("🧍 Queue Standing", ("queue", "line")),
    "parcel_delivery": ("📦 Parcel Pickup", ("parcel", "courier", "delivery")),
    "grocery_shopping": ("🛒 Grocery Shopping", ("grocery", "shopping")),
    "bill_payment": ("🧾 Bill Payment", ("bill", "payment")),
    "moving_help": ("🚚 Moving Help", ("moving", "shifting")),
    "event_helper": ("🎉 Event Helper", ("event", "function", "party")),
    "house_cleaning": ("🧹 House Cleaning", ("cleaning", "house")),
    "medicine_pickup": ("💊 Medicine Pickup", ("medicine", "pharmacy")),
    "document_work": ("📄 Document Work", ("document", "typing", "paper")),
}

JOB_TYPE_KEYWORDS = {code: keywords for code, (_, keywords) in JOB_TYPES.items()}

VEHICLE_TYPES = {
    "none": ("🚶 No Vehicle", ("none", "no", "walk", "1")),
    "two_wheeler": ("🛵 Two Wheeler", ("two", "bike", "scooter", "2")),
    "four_wheeler": ("🚗 Four Wheeler", ("four", "car", "auto", "3")),
}

VEHICLE_KEYWORDS = {code: keywords for code, (_, keywords) in VEHICLE_TYPES.items()}

WORKER_AVAILABILITY = {
    "morning": ("🌅 Morning", ("morning", "6am", "1")),
    "afternoon": ("☀️ Afternoon", ("afternoon", "noon", "2")),
    "evening": ("🌆 Evening", ("evening", "night", "3")),
    "flexible": ("🔄 Flexible", ("flexible", "any", "anytime", "4")),
}

AVAILABILITY_KEYWORDS = {code: keywords for code, (_, keywords) in WORKER_AVAILABILITY.items()}


def option_title(options: dict, code: str | None) -> str:
    entry = options.get(code or "")
    return entry[0] if entry else (code or "-")
