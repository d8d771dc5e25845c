"""
Localized fixed strings for the deterministic parts of a turn.

Confirmation read-backs, gate prompts, and post-action messages are never
generated: they are rendered from these templates so the values shown to the
guest are exactly the values the code holds. Any key missing for a language
falls back to English.
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)

FIELD_LABELS: dict[str, dict[str, str]] = {
    "en": {"name": "Name", "phone": "Phone", "date": "Date", "time": "Time",
           "party_size": "Guests", "comments": "Notes", "id": "Reservation"},
    "ru": {"name": "Имя", "phone": "Телефон", "date": "Дата", "time": "Время",
           "party_size": "Гостей", "comments": "Пожелания", "id": "Бронь"},
    "sr": {"name": "Ime", "phone": "Telefon", "date": "Datum", "time": "Vreme",
           "party_size": "Gostiju", "comments": "Napomene", "id": "Rezervacija"},
    "hu": {"name": "Név", "phone": "Telefon", "date": "Dátum", "time": "Időpont",
           "party_size": "Vendégek", "comments": "Megjegyzés", "id": "Foglalás"},
    "de": {"name": "Name", "phone": "Telefon", "date": "Datum", "time": "Uhrzeit",
           "party_size": "Gäste", "comments": "Hinweise", "id": "Reservierung"},
    "fr": {"name": "Nom", "phone": "Téléphone", "date": "Date", "time": "Heure",
           "party_size": "Couverts", "comments": "Remarques", "id": "Réservation"},
    "es": {"name": "Nombre", "phone": "Teléfono", "date": "Fecha", "time": "Hora",
           "party_size": "Personas", "comments": "Notas", "id": "Reserva"},
}

MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "rate_limited": "You're sending messages a little too fast. Please wait a moment and try again.",
        "message_too_long": "That message is too long for me to handle. Could you shorten it?",
        "blocked_topic": "I can only help with table reservations at {restaurant}.",
        "generic_error": "Sorry, something went wrong on my side. Could you repeat that?",
        "confirm_create": "Please confirm: a table for {party_size} on {date} at {time}, name {name}, phone {phone}{comments}. Shall I book it?",
        "confirm_modify": "Please confirm: change reservation {reservation_id} ({changes}). Shall I go ahead?",
        "confirm_cancel": "Please confirm: cancel reservation {reservation_id}. Shall I go ahead?",
        "action_discarded": "No problem, nothing has been booked or changed. What would you like to adjust?",
        "reprompt_yes_no": "Sorry, I didn't quite get that. {summary}",
        "direct_yes_no": "Please answer just yes or no: should I go ahead?",
        "name_conflict_question": "This phone number is on file under the name {db_name}, but you gave {request_name}. Which name should I use for this booking?",
        "name_choice_reprompt": "Please choose one: 1) {db_name} or 2) {request_name}.",
        "name_choice_failed": "I couldn't tell which name to use, so nothing has been booked yet. What name should the reservation be under?",
        "booking_confirmed": "Your table is booked!\n{id_label}: {id}\n{name_label}: {name}\n{phone_label}: {phone}\n{date_label}: {date}\n{time_label}: {time}\n{party_size_label}: {party_size}",
        "booking_confirmed_generic": "Your booking is confirmed. Details will follow shortly.",
        "cancelled": "Reservation {id} has been cancelled.",
        "modified": "Reservation {id} is updated: {date} at {time} for {party_size}.",
        "modified_generic": "Your reservation has been updated. Details will follow shortly.",
        "action_failed": "Sorry, I couldn't complete that ({reason}). Would you like to try something else?",
        "which_reservation": "Which reservation do you mean? Please give me the reservation number or the phone number used for the booking.",
        "ask_missing": "To book a table I still need your {fields}.",
        "unavailable": "Unfortunately {date} at {time} for {party_size} is fully booked.",
        "alternatives": "Nearby times that are free: {slots}.",
        "time_range_question": "Which exact time within {range} would suit you best?",
        "stuck_intervention": "I want to get this right. In one sentence, would you like a new booking or a change to an existing one?",
        "suggestion_party_size": "Will it be {value} guests, like usual?",
        "anything_else": "Is there anything else I can help you with?",
        "availability_check_failed": "I couldn't check availability just now. Shall I try again?",
        "invalid_change": "I can't change the {field} to {value} ({reason}). What should it be instead?",
    },
    "ru": {
        "rate_limited": "Вы отправляете сообщения слишком быстро. Пожалуйста, подождите немного.",
        "message_too_long": "Сообщение слишком длинное. Сократите его, пожалуйста.",
        "blocked_topic": "Я могу помочь только с бронированием столиков в {restaurant}.",
        "generic_error": "Извините, что-то пошло не так. Повторите, пожалуйста.",
        "confirm_create": "Пожалуйста, подтвердите: столик на {party_size} чел., {date} в {time}, имя {name}, телефон {phone}{comments}. Бронирую?",
        "confirm_modify": "Пожалуйста, подтвердите: изменить бронь {reservation_id} ({changes}). Продолжить?",
        "confirm_cancel": "Пожалуйста, подтвердите: отменить бронь {reservation_id}. Продолжить?",
        "action_discarded": "Хорошо, ничего не забронировано и не изменено. Что поправить?",
        "reprompt_yes_no": "Извините, я не совсем понял. {summary}",
        "direct_yes_no": "Ответьте, пожалуйста, просто «да» или «нет»: продолжить?",
        "name_conflict_question": "Этот номер записан на имя {db_name}, а вы назвали {request_name}. Какое имя указать в брони?",
        "name_choice_reprompt": "Выберите, пожалуйста: 1) {db_name} или 2) {request_name}.",
        "name_choice_failed": "Я не понял, какое имя использовать, поэтому бронь пока не создана. На какое имя бронировать?",
        "booking_confirmed": "Столик забронирован!\n{id_label}: {id}\n{name_label}: {name}\n{phone_label}: {phone}\n{date_label}: {date}\n{time_label}: {time}\n{party_size_label}: {party_size}",
        "booking_confirmed_generic": "Бронь подтверждена. Подробности пришлём чуть позже.",
        "cancelled": "Бронь {id} отменена.",
        "modified": "Бронь {id} изменена: {date} в {time}, гостей: {party_size}.",
        "modified_generic": "Бронь изменена. Подробности пришлём чуть позже.",
        "action_failed": "Извините, не получилось ({reason}). Попробуем что-то другое?",
        "which_reservation": "О какой брони идёт речь? Назовите номер брони или телефон, на который она оформлена.",
        "ask_missing": "Для бронирования мне ещё нужно: {fields}.",
        "unavailable": "К сожалению, {date} в {time} на {party_size} чел. мест нет.",
        "alternatives": "Свободно рядом: {slots}.",
        "time_range_question": "Какое точное время в промежутке {range} вам удобно?",
        "stuck_intervention": "Хочу всё сделать правильно. Вам нужна новая бронь или изменение существующей?",
        "suggestion_party_size": "Как обычно, на {value} гостей?",
        "anything_else": "Могу ли я ещё чем-то помочь?",
        "availability_check_failed": "Не удалось проверить наличие мест. Попробовать ещё раз?",
        "invalid_change": "Не могу изменить поле «{field}» на {value} ({reason}). Какое значение указать?",
    },
    "sr": {
        "rate_limited": "Šaljete poruke prebrzo. Molim vas sačekajte trenutak.",
        "generic_error": "Izvinite, nešto je pošlo naopako. Možete li da ponovite?",
        "confirm_create": "Molim potvrdite: sto za {party_size}, {date} u {time}, ime {name}, telefon {phone}{comments}. Da rezervišem?",
        "confirm_modify": "Molim potvrdite: izmena rezervacije {reservation_id} ({changes}). Da nastavim?",
        "confirm_cancel": "Molim potvrdite: otkazivanje rezervacije {reservation_id}. Da nastavim?",
        "action_discarded": "U redu, ništa nije rezervisano niti promenjeno. Šta želite da izmenite?",
        "reprompt_yes_no": "Izvinite, nisam razumeo. {summary}",
        "direct_yes_no": "Molim odgovorite samo sa da ili ne: da nastavim?",
        "name_conflict_question": "Ovaj broj je zaveden na ime {db_name}, a vi ste naveli {request_name}. Koje ime da upišem?",
        "name_choice_reprompt": "Izaberite: 1) {db_name} ili 2) {request_name}.",
        "booking_confirmed": "Sto je rezervisan!\n{id_label}: {id}\n{name_label}: {name}\n{phone_label}: {phone}\n{date_label}: {date}\n{time_label}: {time}\n{party_size_label}: {party_size}",
        "booking_confirmed_generic": "Rezervacija je potvrđena. Detalje ćete uskoro dobiti.",
        "cancelled": "Rezervacija {id} je otkazana.",
        "modified": "Rezervacija {id} je izmenjena: {date} u {time}, gostiju: {party_size}.",
        "action_failed": "Izvinite, to nije uspelo ({reason}). Želite li nešto drugo?",
        "which_reservation": "Na koju rezervaciju mislite? Navedite broj rezervacije ili telefon.",
        "ask_missing": "Za rezervaciju mi još treba: {fields}.",
        "anything_else": "Mogu li još nešto da učinim za vas?",
    },
    "hu": {
        "confirm_create": "Kérem, erősítse meg: asztal {party_size} főre, {date} {time}, név: {name}, telefon: {phone}{comments}. Lefoglaljam?",
        "action_discarded": "Rendben, semmit nem foglaltam le. Mit módosítsunk?",
        "direct_yes_no": "Kérem, csak igennel vagy nemmel válaszoljon: folytassam?",
        "booking_confirmed": "Az asztal lefoglalva!\n{id_label}: {id}\n{name_label}: {name}\n{phone_label}: {phone}\n{date_label}: {date}\n{time_label}: {time}\n{party_size_label}: {party_size}",
        "booking_confirmed_generic": "A foglalás megerősítve. A részleteket hamarosan küldjük.",
        "cancelled": "A(z) {id} foglalás lemondva.",
        "ask_missing": "A foglaláshoz még szükségem van erre: {fields}.",
    },
    "de": {
        "rate_limited": "Sie senden Nachrichten etwas zu schnell. Bitte warten Sie einen Moment.",
        "confirm_create": "Bitte bestätigen Sie: Tisch für {party_size} am {date} um {time}, Name {name}, Telefon {phone}{comments}. Soll ich buchen?",
        "confirm_cancel": "Bitte bestätigen Sie: Reservierung {reservation_id} stornieren. Soll ich fortfahren?",
        "action_discarded": "Kein Problem, es wurde nichts gebucht oder geändert. Was möchten Sie anpassen?",
        "direct_yes_no": "Bitte antworten Sie nur mit Ja oder Nein: Soll ich fortfahren?",
        "name_conflict_question": "Diese Nummer ist auf den Namen {db_name} gespeichert, Sie haben {request_name} angegeben. Welchen Namen soll ich verwenden?",
        "name_choice_reprompt": "Bitte wählen Sie: 1) {db_name} oder 2) {request_name}.",
        "booking_confirmed": "Ihr Tisch ist reserviert!\n{id_label}: {id}\n{name_label}: {name}\n{phone_label}: {phone}\n{date_label}: {date}\n{time_label}: {time}\n{party_size_label}: {party_size}",
        "booking_confirmed_generic": "Ihre Reservierung ist bestätigt. Details folgen in Kürze.",
        "cancelled": "Reservierung {id} wurde storniert.",
        "ask_missing": "Für die Reservierung brauche ich noch: {fields}.",
    },
    "fr": {
        "confirm_create": "Merci de confirmer : une table pour {party_size} le {date} à {time}, nom {name}, téléphone {phone}{comments}. Je réserve ?",
        "action_discarded": "Pas de problème, rien n'a été réservé. Que souhaitez-vous modifier ?",
        "booking_confirmed": "Votre table est réservée !\n{id_label}: {id}\n{name_label}: {name}\n{phone_label}: {phone}\n{date_label}: {date}\n{time_label}: {time}\n{party_size_label}: {party_size}",
        "booking_confirmed_generic": "Votre réservation est confirmée. Les détails suivront.",
        "cancelled": "La réservation {id} a été annulée.",
    },
    "es": {
        "confirm_create": "Por favor confirme: mesa para {party_size} el {date} a las {time}, nombre {name}, teléfono {phone}{comments}. ¿La reservo?",
        "action_discarded": "Sin problema, no se ha reservado nada. ¿Qué desea cambiar?",
        "booking_confirmed": "¡Su mesa está reservada!\n{id_label}: {id}\n{name_label}: {name}\n{phone_label}: {phone}\n{date_label}: {date}\n{time_label}: {time}\n{party_size_label}: {party_size}",
        "booking_confirmed_generic": "Su reserva está confirmada. Los detalles llegarán en breve.",
        "cancelled": "La reserva {id} ha sido cancelada.",
    },
}


def render(key: str, language: str, **values: Any) -> str:
    """Render a fixed message in ``language``, falling back to English."""
    template = MESSAGES.get(language, {}).get(key)
    if template is None:
        template = MESSAGES["en"][key]
    return template.format(**values)


def field_labels(language: str) -> dict[str, str]:
    return FIELD_LABELS.get(language, FIELD_LABELS["en"])


def label_values(key: str) -> list[str]:
    """Every localized label for one field, used to scan past confirmations."""
    return sorted({labels[key] for labels in FIELD_LABELS.values()}, key=len, reverse=True)
