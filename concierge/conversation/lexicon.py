"""
Multi-language phrase tables.

Plain data used by the deterministic paths of the extractor, language
detector, gate, and router. Keys are ISO 639-1 codes; entries are
lower-case and matched on word boundaries.
"""

import re
from typing import Iterable, Optional

from concierge.utils import fold_text, strip_punctuation

SUPPORTED_LANGUAGES: tuple[str, ...] = ("en", "ru", "sr", "hu", "de", "fr", "es", "it", "pt", "nl")

AFFIRMATIVE: dict[str, tuple[str, ...]] = {
    "en": ("yes", "yeah", "yep", "yup", "sure", "ok", "okay", "correct", "confirm",
           "confirmed", "right", "that's right", "go ahead", "please do", "sounds good",
           "perfect", "absolutely", "of course", "book it", "do it"),
    "ru": ("да", "ага", "конечно", "верно", "подтверждаю", "хорошо", "давайте", "да, всё верно",
           "всё верно", "все верно", "бронируйте", "ок"),
    "sr": ("da", "može", "moze", "važi", "vazi", "potvrđujem", "potvrdjujem", "tačno", "tacno",
           "može", "да", "може", "важи", "тачно", "потврђујем"),
    "hu": ("igen", "persze", "rendben", "jó", "jo", "oké", "oke", "stimmel", "mehet"),
    "de": ("ja", "genau", "klar", "richtig", "stimmt", "passt", "gerne", "einverstanden"),
    "fr": ("oui", "d'accord", "parfait", "c'est bon", "exactement", "bien sûr"),
    "es": ("sí", "si", "claro", "vale", "correcto", "perfecto", "de acuerdo"),
    "it": ("sì", "certo", "va bene", "esatto", "perfetto"),
    "pt": ("sim", "claro", "certo", "perfeito"),
    "nl": ("ja", "prima", "klopt", "goed"),
}

NEGATIVE: dict[str, tuple[str, ...]] = {
    "en": ("no", "nope", "nah", "don't", "do not", "not now", "cancel that", "never mind",
           "wait", "stop", "wrong", "incorrect", "not right", "not correct", "not ok"),
    "ru": ("нет", "не надо", "отмена", "не нужно", "неверно", "стоп", "подождите"),
    "sr": ("ne", "nemoj", "ne treba", "pogrešno", "pogresno", "не", "немој", "не треба"),
    "hu": ("nem", "mégse", "megse", "várj", "rossz"),
    "de": ("nein", "nicht", "doch nicht", "falsch", "warte"),
    "fr": ("non", "pas maintenant", "attendez", "faux"),
    "es": ("no", "espera", "incorrecto"),
    "it": ("no", "aspetta", "sbagliato"),
    "pt": ("não", "nao", "espera", "errado"),
    "nl": ("nee", "niet", "wacht", "fout"),
}

# Words that flip a following yes-word ("not correct", "nicht richtig").
# Bare standalone refusals ("no", "nein") are left to NEGATIVE.
NEGATORS: dict[str, tuple[str, ...]] = {
    "en": ("not", "isn't", "isnt", "is not", "ain't", "never", "don't", "do not"),
    "ru": ("не",),
    "sr": ("ne", "nije", "не", "није"),
    "hu": ("nem", "nincs"),
    "de": ("nicht", "kein", "keine"),
    "fr": ("pas",),
    "es": ("no es", "no está", "no esta"),
    "it": ("non",),
    "pt": ("não", "nao"),
    "nl": ("niet", "geen"),
}

GRATITUDE: tuple[str, ...] = (
    "thanks", "thank you", "thx", "спасибо", "hvala", "хвала", "köszönöm", "koszonom",
    "köszi", "danke", "merci", "gracias", "grazie", "obrigado", "obrigada", "bedankt",
)

WEEKDAYS: tuple[str, ...] = (
    # en
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "mon", "tue", "wed", "thu", "fri", "sat", "sun",
    # ru
    "понедельник", "вторник", "среду", "среда", "четверг", "пятницу", "пятница",
    "субботу", "суббота", "воскресенье",
    # sr
    "ponedeljak", "utorak", "sreda", "sredu", "četvrtak", "cetvrtak", "petak", "subota",
    "subotu", "nedelja", "nedelju", "понедељак", "уторак", "четвртак", "петак", "субота",
    "недеља",
    # hu
    "hétfő", "kedd", "szerda", "csütörtök", "péntek", "szombat", "vasárnap",
    # de
    "montag", "dienstag", "mittwoch", "donnerstag", "freitag", "samstag", "sonntag",
    # fr
    "lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche",
    # es
    "lunes", "martes", "miércoles", "miercoles", "jueves", "viernes", "sábado", "sabado",
    "domingo",
    # it
    "lunedì", "martedì", "mercoledì", "giovedì", "venerdì", "sabato", "domenica",
)

MONTHS: tuple[str, ...] = (
    "january", "february", "march", "april", "may", "june", "july", "august",
    "september", "october", "november", "december",
    "jan", "feb", "mar", "apr", "jun", "jul", "aug", "sep", "sept", "oct", "nov", "dec",
    "января", "февраля", "марта", "апреля", "мая", "июня", "июля", "августа",
    "сентября", "октября", "ноября", "декабря",
    "januar", "februar", "mart", "april", "maj", "jun", "jul", "avgust", "septembar",
    "oktobar", "novembar", "decembar",
    "január", "február", "március", "április", "május", "június", "július",
    "augusztus", "szeptember", "október", "november", "december",
    "januar", "märz", "mai", "juni", "juli", "oktober", "dezember",
    "janvier", "février", "mars", "avril", "juin", "juillet", "août", "septembre",
    "octobre", "novembre", "décembre",
    "enero", "febrero", "marzo", "abril", "mayo", "junio", "julio", "agosto",
    "septiembre", "octubre", "noviembre", "diciembre",
)

RELATIVE_DAYS: tuple[str, ...] = (
    "today", "tonight", "tomorrow", "day after tomorrow", "this evening", "next week",
    "this weekend", "weekend",
    "сегодня", "завтра", "послезавтра", "на выходных",
    "danas", "večeras", "veceras", "sutra", "prekosutra", "данас", "вечерас", "сутра",
    "ma este", "holnap", "holnapután", "hétvégén",
    "heute", "morgen", "übermorgen", "heute abend",
    "aujourd'hui", "ce soir", "demain", "après-demain",
    "hoy", "esta noche", "mañana", "pasado mañana",
    "oggi", "stasera", "domani", "dopodomani",
    "hoje", "amanhã", "vandaag", "morgen",
)

NUMBER_WORDS: dict[str, int] = {
    # en
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6, "seven": 7,
    "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
    # ru
    "один": 1, "одна": 1, "два": 2, "двое": 2, "двоих": 2, "три": 3, "трое": 3, "троих": 3,
    "четыре": 4, "четверо": 4, "пять": 5, "пятеро": 5, "шесть": 6, "шестеро": 6,
    "семь": 7, "семеро": 7, "восемь": 8, "девять": 9, "десять": 10,
    # sr
    "jedan": 1, "jedna": 1, "dva": 2, "dvoje": 2, "tri": 3, "troje": 3, "četiri": 4,
    "cetiri": 4, "četvoro": 4, "pet": 5, "petoro": 5, "šest": 6, "sest": 6, "sedam": 7,
    "osam": 8, "devet": 9, "deset": 10,
    # hu
    "egy": 1, "kettő": 2, "ketto": 2, "két": 2, "három": 3, "harom": 3, "négy": 4, "negy": 4,
    "öt": 5, "hat": 6, "hét": 7, "nyolc": 8, "kilenc": 9, "tíz": 10,
    # de
    "eins": 1, "zwei": 2, "drei": 3, "vier": 4, "fünf": 5, "sechs": 6, "sieben": 7,
    "acht": 8, "neun": 9, "zehn": 10,
    # fr
    "un": 1, "une": 1, "deux": 2, "trois": 3, "quatre": 4, "cinq": 5, "sept": 7,
    "huit": 8, "neuf": 9, "dix": 10,
    # es
    "uno": 1, "dos": 2, "tres": 3, "cuatro": 4, "cinco": 5, "seis": 6, "siete": 7,
    "ocho": 8, "nueve": 9, "diez": 10,
}

# Words that denote a fixed headcount in one language only.
PARTY_SIZE_WORDS: dict[str, dict[str, int]] = {
    "en": {"just me": 1, "only me": 1, "table for one": 1, "the two of us": 2,
           "both of us": 2, "a couple": 2, "the three of us": 3, "the four of us": 4,
           "the five of us": 5, "the six of us": 6},
    "ru": {"вдвоём": 2, "вдвоем": 2, "втроём": 3, "втроем": 3,
           "вчетвером": 4, "впятером": 5, "вшестером": 6, "всемером": 7, "ввосьмером": 8},
    "sr": {"nas dvoje": 2, "nas troje": 3, "nas četvoro": 4,
           "nas cetvoro": 4, "nas petoro": 5, "nas šestoro": 6, "нас двоје": 2,
           "нас троје": 3, "нас четворо": 4, "нас петоро": 5},
    "hu": {"egyedül": 1, "ketten": 2, "hárman": 3, "harman": 3, "négyen": 4, "negyen": 4,
           "öten": 5, "oten": 5, "hatan": 6, "heten": 7},
    "de": {"allein": 1, "zu zweit": 2, "zu dritt": 3, "zu viert": 4, "zu fünft": 5,
           "zu sechst": 6},
    "fr": {"à deux": 2, "nous deux": 2, "à trois": 3, "à quatre": 4,
           "à cinq": 5},
    "es": {"solo yo": 1, "somos dos": 2, "los dos": 2, "somos tres": 3, "somos cuatro": 4,
           "somos cinco": 5, "somos seis": 6},
}

NEW_BOOKING_PHRASES: tuple[str, ...] = (
    "book another", "another reservation", "another booking", "another table",
    "new reservation", "new booking", "one more reservation", "one more table",
    "second reservation", "book again", "make another",
    "ещё одну бронь", "еще одну бронь", "ещё один столик", "еще один столик", "новую бронь",
    "новое бронирование", "забронировать ещё", "забронировать еще", "ещё бронь", "еще бронь",
    "još jednu rezervaciju", "jos jednu rezervaciju", "novu rezervaciju", "još jedan sto",
    "jos jedan sto", "још једну резервацију", "нову резервацију",
    "új foglalás", "még egy foglalás", "még egy asztal", "másik foglalás",
    "noch eine reservierung", "neue reservierung", "noch einen tisch",
    "une autre réservation", "nouvelle réservation", "une autre table",
    "otra reserva", "nueva reserva", "otra mesa",
    "un'altra prenotazione", "nuova prenotazione",
)

EXISTING_BOOKING_PHRASES: tuple[str, ...] = (
    "cancel my reservation", "cancel my booking", "cancel the reservation",
    "cancel the booking", "change my reservation", "change my booking",
    "modify my reservation", "modify my booking", "move my reservation", "move my booking",
    "reschedule", "my existing reservation", "check my reservation", "find my reservation",
    "отменить бронь", "отменить бронирование", "отмените бронь", "изменить бронь",
    "перенести бронь", "проверить бронь", "найти бронь", "мою бронь",
    "otkazati rezervaciju", "otkaži rezervaciju", "otkazi rezervaciju",
    "promeniti rezervaciju", "izmeniti rezervaciju", "proveriti rezervaciju",
    "откажи резервацију", "моју резервацију",
    "lemondani a foglalást", "foglalás lemondása", "módosítani a foglalást",
    "foglalásomat",
    "reservierung stornieren", "reservierung ändern",
    "annuler ma réservation", "modifier ma réservation",
    "cancelar mi reserva", "cambiar mi reserva",
    "cancellare la prenotazione",
)

ALTERNATIVES_PHRASES: tuple[str, ...] = (
    "other time", "another time", "different time", "alternatives", "alternative",
    "other options", "what else", "what is free", "what's free", "when is free",
    "when are you free", "any other", "earlier", "later",
    "другое время", "другие варианты", "а когда", "когда свободно", "раньше", "позже",
    "drugo vreme", "drugi termin", "kada ima mesta", "ranije", "kasnije",
    "más időpont", "másik időpont", "mikor van hely", "korábban", "később",
    "andere zeit", "andere uhrzeit", "wann ist frei", "früher", "später",
    "autre heure", "autre créneau", "plus tôt", "plus tard",
    "otra hora", "otro horario", "más temprano", "más tarde",
)

_WORD_CACHE: dict[str, re.Pattern] = {}


def _phrase_pattern(phrase: str) -> re.Pattern:
    pattern = _WORD_CACHE.get(phrase)
    if pattern is None:
        pattern = re.compile(r"(?<!\w)" + re.escape(phrase) + r"(?!\w)")
        _WORD_CACHE[phrase] = pattern
    return pattern


def contains_phrase(text: str, phrases: Iterable[str]) -> bool:
    """Whether any phrase occurs in ``text`` on word boundaries (case-folded)."""
    folded = fold_text(text)
    return any(_phrase_pattern(fold_text(p)).search(folded) for p in phrases)


def matched_phrases(text: str, phrases: Iterable[str]) -> list[str]:
    folded = fold_text(text)
    return [p for p in phrases if _phrase_pattern(fold_text(p)).search(folded)]


def all_phrases(table: dict[str, tuple[str, ...]]) -> tuple[str, ...]:
    return tuple(p for phrases in table.values() for p in phrases)


def negates_affirmative(text: str) -> bool:
    """A negator directly before a yes-word, at most one word apart.

    "that's not correct" and "nicht ganz richtig" match; "no, go ahead"
    does not, because the comma ends the negated span.
    """
    folded = fold_text(text)
    negators = "|".join(re.escape(fold_text(n)) for n in all_phrases(NEGATORS))
    for phrase in all_phrases(AFFIRMATIVE):
        pattern = (
            r"(?<!\w)(?:" + negators + r")\s+(?:[\w']+\s+)?"
            + re.escape(fold_text(phrase)) + r"(?!\w)"
        )
        if re.search(pattern, folded):
            return True
    return False


def yes_or_no(text: str) -> Optional[bool]:
    """Phrase-table verdict: True for yes, False for no, None when mixed or absent."""
    if negates_affirmative(text):
        return False
    affirmative = contains_phrase(text, all_phrases(AFFIRMATIVE))
    negative = contains_phrase(text, all_phrases(NEGATIVE))
    if affirmative and not negative:
        return True
    if negative and not affirmative:
        return False
    return None


def is_yes_no_token(text: str) -> bool:
    """A bare yes/no/thanks reply, in any supported language."""
    cleaned = fold_text(strip_punctuation(text))
    if not cleaned:
        return False
    vocabulary = {
        fold_text(p) for p in all_phrases(AFFIRMATIVE) + all_phrases(NEGATIVE) + GRATITUDE
    }
    return cleaned in vocabulary
