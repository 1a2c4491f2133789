"""User-facing text in the supported languages."""

import logging

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en"

AVAILABLE_LANGUAGES = {
    "en": "English",
    "de": "Deutsch",
    "es": "Español",
    "fr": "Français",
    "it": "Italiano",
    "nl": "Nederlands",
}

_TRANSLATIONS: dict[str, dict[str, str]] = {
    "en": {
        "Idle": "Idle",
        "Connecting": "Connecting...",
        "Connected": "Connected",
        "Streaming": "Streaming",
        "UnknownDevice": "Unknown Device",
        "Scanning": "Scanning for devices...",
        "DevicesFound": "{0} device(s) found",
        "AudioReadyFrom": "Audio ready from {0}",
        "ReceivingAudioFrom": "Receiving audio from {0}",
        "OpeningConnectionTo": "Opening connection to {0}",
        "SelectDevice": "Select a device to connect",
        "DeviceNoProfile": "Could not create audio connection. Device may not support A2DP.",
        "OpenFailed": "Failed to open audio connection: {0}",
        "OpenError": "Error opening connection: {0}",
        "RetriesExhausted": "Could not establish connection after multiple attempts.",
    },
    "de": {
        "Idle": "Bereit",
        "Connecting": "Verbinden...",
        "Connected": "Verbunden",
        "Streaming": "Streaming",
        "UnknownDevice": "Unbekanntes Gerät",
        "Scanning": "Suche nach Geräten...",
        "DevicesFound": "{0} Gerät(e) gefunden",
        "AudioReadyFrom": "Audio bereit von {0}",
        "ReceivingAudioFrom": "Empfange Audio von {0}",
        "OpeningConnectionTo": "Verbindung zu {0} wird geöffnet",
        "SelectDevice": "Gerät zum Verbinden auswählen",
        "DeviceNoProfile": "Audioverbindung konnte nicht erstellt werden. Das Gerät unterstützt möglicherweise kein A2DP.",
        "OpenFailed": "Audioverbindung konnte nicht geöffnet werden: {0}",
        "OpenError": "Fehler beim Öffnen der Verbindung: {0}",
        "RetriesExhausted": "Verbindung konnte nach mehreren Versuchen nicht hergestellt werden.",
    },
    "es": {
        "Idle": "Inactivo",
        "Connecting": "Conectando...",
        "Connected": "Conectado",
        "Streaming": "Transmitiendo",
        "UnknownDevice": "Dispositivo desconocido",
        "Scanning": "Buscando dispositivos...",
        "DevicesFound": "{0} dispositivo(s) encontrado(s)",
        "AudioReadyFrom": "Audio listo desde {0}",
        "ReceivingAudioFrom": "Recibiendo audio de {0}",
        "OpeningConnectionTo": "Abriendo conexión con {0}",
        "SelectDevice": "Seleccione un dispositivo para conectar",
    },
    "fr": {
        "Idle": "Inactif",
        "Connecting": "Connexion...",
        "Connected": "Connecté",
        "Streaming": "Diffusion",
        "UnknownDevice": "Appareil inconnu",
        "Scanning": "Recherche d'appareils...",
        "DevicesFound": "{0} appareil(s) trouvé(s)",
        "AudioReadyFrom": "Audio prêt depuis {0}",
        "ReceivingAudioFrom": "Réception audio de {0}",
        "OpeningConnectionTo": "Ouverture de la connexion à {0}",
        "SelectDevice": "Sélectionnez un appareil à connecter",
    },
    "it": {
        "Idle": "Inattivo",
        "Connecting": "Connessione...",
        "Connected": "Connesso",
        "Streaming": "Streaming",
        "UnknownDevice": "Dispositivo sconosciuto",
        "Scanning": "Ricerca dispositivi...",
        "DevicesFound": "{0} dispositivo/i trovato/i",
        "AudioReadyFrom": "Audio pronto da {0}",
        "ReceivingAudioFrom": "Ricezione audio da {0}",
        "OpeningConnectionTo": "Apertura connessione a {0}",
        "SelectDevice": "Seleziona un dispositivo da connettere",
    },
    "nl": {
        "Idle": "Inactief",
        "Connecting": "Verbinden...",
        "Connected": "Verbonden",
        "Streaming": "Streamen",
        "UnknownDevice": "Onbekend apparaat",
        "Scanning": "Zoeken naar apparaten...",
        "DevicesFound": "{0} apparaat/apparaten gevonden",
        "AudioReadyFrom": "Audio gereed van {0}",
        "ReceivingAudioFrom": "Audio ontvangen van {0}",
        "OpeningConnectionTo": "Verbinding openen met {0}",
        "SelectDevice": "Selecteer een apparaat om te verbinden",
    },
}


class Localizer:
    """Looks up text for one language, falling back to English."""

    def __init__(self, language: str = DEFAULT_LANGUAGE):
        self._language = DEFAULT_LANGUAGE
        self.set_language(language)

    @property
    def language(self) -> str:
        return self._language

    def set_language(self, language: str) -> None:
        if language not in _TRANSLATIONS:
            logger.warning("Unsupported language '%s', using English", language)
            language = DEFAULT_LANGUAGE
        self._language = language

    def get(self, key: str) -> str:
        text = _TRANSLATIONS[self._language].get(key)
        if text is None:
            text = _TRANSLATIONS[DEFAULT_LANGUAGE].get(key, key)
        return text

    def format(self, key: str, *args) -> str:
        return self.get(key).format(*args)
