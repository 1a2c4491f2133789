"""BlueZ D-Bus names and Bluetooth audio profile UUIDs."""

# Advanced Audio Distribution Profile (A2DP)
A2DP_SOURCE_UUID = "0000110a-0000-1000-8000-00805f9b34fb"

# BlueZ D-Bus service and interface names
BLUEZ_SERVICE = "org.bluez"
ADAPTER_INTERFACE = "org.bluez.Adapter1"
DEVICE_INTERFACE = "org.bluez.Device1"
MEDIA_TRANSPORT_INTERFACE = "org.bluez.MediaTransport1"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"
OBJECT_MANAGER_INTERFACE = "org.freedesktop.DBus.ObjectManager"

# Default adapter path
DEFAULT_ADAPTER_PATH = "/org/bluez/hci0"

# Match rule for every signal BlueZ emits (ObjectManager + PropertiesChanged)
BLUEZ_SIGNAL_MATCH = "type='signal',sender='org.bluez'"

# MediaTransport1.State values
TRANSPORT_STATE_ACTIVE = "active"
