# Language picklist and the small amount of UI copy the server renders.
# Only English and Uzbek have translated copy; every other language falls back to English.

from typing import Dict, List, Tuple

# (code, label shown in the picker)
LANGUAGES: List[Tuple[str, str]] = [
    ("en", "English"),
    ("uz", "O'zbek (Uzbek)"),
    ("es", "Español (Spanish)"),
    ("zh", "中文 (Chinese)"),
    ("hi", "हिन्दी (Hindi)"),
    ("ar", "العربية (Arabic)"),
    ("ru", "Русский (Russian)"),
    ("pt", "Português (Portuguese)"),
    ("fr", "Français (French)"),
    ("de", "Deutsch (German)"),
    ("ja", "日本語 (Japanese)"),
    ("tr", "Türkçe (Turkish)"),
    ("ko", "한국어 (Korean)"),
    ("vi", "Tiếng Việt (Vietnamese)"),
    ("it", "Italiano (Italian)"),
    ("pl", "Polski (Polish)"),
    ("uk", "Українська (Ukrainian)"),
    ("nl", "Nederlands (Dutch)"),
    ("th", "ไทย (Thai)"),
    ("id", "Bahasa Indonesia"),
    ("ur", "اردو (Urdu)"),
    ("sw", "Kiswahili (Swahili)"),
    ("bn", "বাংলা (Bengali)"),
    ("fa", "فارسی (Persian)"),
    ("ms", "Bahasa Melayu"),
    ("pa", "ਪੰਜਾਬੀ (Punjabi)"),
]

# English names used when telling the model which language to answer in.
LANGUAGE_NAMES: Dict[str, str] = {
    "en": "English",
    "uz": "Uzbek",
    "es": "Spanish",
    "zh": "Chinese (Mandarin)",
    "hi": "Hindi",
    "ar": "Arabic",
    "ru": "Russian",
    "pt": "Portuguese",
    "fr": "French",
    "de": "German",
    "ja": "Japanese",
    "tr": "Turkish",
    "ko": "Korean",
    "vi": "Vietnamese",
    "it": "Italian",
    "pl": "Polish",
    "uk": "Ukrainian",
    "nl": "Dutch",
    "th": "Thai",
    "id": "Indonesian",
    "ur": "Urdu",
    "sw": "Swahili",
    "bn": "Bengali",
    "fa": "Persian",
    "ms": "Malay",
    "pa": "Punjabi",
}

COPY: Dict[str, Dict[str, str]] = {
    "greeting": {
        "en": "Hello. I am Abdulloh AI, an autonomous medical diagnostic assistant. I can analyze symptoms and interpret medical files (ECG, MRI, CT, Labs). Please state your primary complaint or upload your medical reports/images.",
        "uz": "Salom. Men Abdulloh AI, avtonom tibbiy diagnostika yordamchisiman. Men simptomlarni tahlil qila olaman va tibbiy fayllarni (EKG, MRT, KT, tahlillar) o'qiy olaman. Iltimos, shikoyatingizni ayting yoki tibbiy hisobotlaringizni yuklang.",
    },
    "error": {
        "en": "I encountered an error processing your request. Please try again.",
        "uz": "So'rovingizni qayta ishlashda xatolik yuz berdi. Iltimos, qaytadan urinib ko'ring.",
    },
    "quota": {
        "en": "API quota exceeded. Please provide a new key.",
        "uz": "API kvotasi tugadi (429). Iltimos, yangi kalit kiriting.",
    },
    "placeholder": {
        "en": "Type symptoms, lab results, or upload files...",
        "uz": "Semptomlar, laboratoriya natijalari yoki fayllar yuklang...",
    },
    "disclaimer": {
        "en": "AI can make mistakes. Review with a medical professional.",
        "uz": "AI xato qilishi mumkin. Shifokor bilan maslahatlashing.",
    },
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, "English")


def text(key: str, language: str) -> str:
    variants = COPY[key]
    return variants.get(language, variants["en"])


def ui_copy(language: str) -> Dict[str, str]:
    """All localized strings for one language, as sent to the browser."""
    return {key: text(key, language) for key in COPY}
