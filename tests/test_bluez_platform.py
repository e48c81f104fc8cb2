import subprocess
import unittest
from unittest import mock

from sppbridge.transport.bluez import BlueZPlatform, RfcommSocket
from sppbridge.transport.platform import SPP_UUID, DeviceDescriptor


def completed(stdout: str = "", returncode: int = 0) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(
        args=["bluetoothctl"], returncode=returncode, stdout=stdout, stderr=""
    )


SHOW_POWERED = """Controller 00:1A:7D:DA:71:13 (public)
\tName: raspberrypi
\tAlias: raspberrypi
\tPowered: yes
\tDiscoverable: no
"""


class BlueZAdapterTests(unittest.TestCase):
    @mock.patch("sppbridge.transport.bluez.subprocess.run")
    def test_adapter_present_when_controller_listed(self, run) -> None:
        run.return_value = completed("Controller 00:1A:7D:DA:71:13 raspberrypi [default]\n")
        self.assertTrue(BlueZPlatform().adapter_present())
        args, kwargs = run.call_args
        self.assertEqual(args[0], ["bluetoothctl", "list"])
        self.assertTrue(kwargs["capture_output"])

    @mock.patch("sppbridge.transport.bluez.subprocess.run")
    def test_adapter_absent_without_controllers(self, run) -> None:
        run.return_value = completed("")
        self.assertFalse(BlueZPlatform().adapter_present())

    @mock.patch("sppbridge.transport.bluez.subprocess.run", side_effect=FileNotFoundError)
    def test_adapter_absent_without_bluetoothctl(self, _run) -> None:
        self.assertFalse(BlueZPlatform().adapter_present())

    @mock.patch("sppbridge.transport.bluez.subprocess.run")
    def test_adapter_enabled_reads_power_state(self, run) -> None:
        run.return_value = completed(SHOW_POWERED)
        self.assertTrue(BlueZPlatform().adapter_enabled())
        run.return_value = completed(SHOW_POWERED.replace("Powered: yes", "Powered: no"))
        self.assertFalse(BlueZPlatform().adapter_enabled())

    @mock.patch(
        "sppbridge.transport.bluez.subprocess.run",
        side_effect=subprocess.TimeoutExpired(cmd="bluetoothctl", timeout=5),
    )
    def test_adapter_disabled_when_query_times_out(self, _run) -> None:
        self.assertFalse(BlueZPlatform().adapter_enabled())


class BlueZBondedDevicesTests(unittest.TestCase):
    @mock.patch("sppbridge.transport.bluez.subprocess.run")
    def test_parses_paired_devices(self, run) -> None:
        run.return_value = completed(
            "Device 86:67:7A:12:34:56 RPP02N\n"
            "Device 11:22:33:44:55:66 11-22-33-44-55-66\n"
            "Device aa:bb:cc:dd:ee:ff Kitchen Printer 2\n"
        )
        devices = BlueZPlatform().bonded_devices()
        self.assertEqual(
            devices,
            [
                DeviceDescriptor(address="86:67:7A:12:34:56", name="RPP02N"),
                DeviceDescriptor(address="11:22:33:44:55:66", name=None),
                DeviceDescriptor(address="AA:BB:CC:DD:EE:FF", name="Kitchen Printer 2"),
            ],
        )
        self.assertEqual(run.call_args[0][0], ["bluetoothctl", "devices", "Paired"])

    @mock.patch("sppbridge.transport.bluez.subprocess.run")
    def test_falls_back_to_legacy_command(self, run) -> None:
        run.side_effect = [
            completed("Too many arguments: 1 > 0\n"),
            completed("Device 86:67:7A:12:34:56 RPP02N\n"),
        ]
        devices = BlueZPlatform().bonded_devices()
        self.assertEqual(devices, [DeviceDescriptor("86:67:7A:12:34:56", "RPP02N")])
        self.assertEqual(run.call_args[0][0], ["bluetoothctl", "paired-devices"])

    @mock.patch("sppbridge.transport.bluez.subprocess.run")
    def test_no_paired_devices(self, run) -> None:
        run.side_effect = [
            completed(""),
            completed("Invalid command in menu main: paired-devices\n"),
        ]
        self.assertEqual(BlueZPlatform().bonded_devices(), [])

    @mock.patch("sppbridge.transport.bluez.subprocess.run", side_effect=FileNotFoundError("bluetoothctl"))
    def test_missing_tool_propagates(self, _run) -> None:
        with self.assertRaises(FileNotFoundError):
            BlueZPlatform().bonded_devices()


class BlueZChannelTests(unittest.TestCase):
    def test_service_channel_uses_sdp_lookup(self) -> None:
        sock = mock.Mock()
        lookup = mock.Mock(return_value=3)
        platform = BlueZPlatform(
            connect_timeout=4.0,
            socket_factory=lambda: sock,
            service_lookup=lookup,
        )
        channel = platform.open_service_channel("86:67:7A:12:34:56", SPP_UUID)
        lookup.assert_called_once_with("86:67:7A:12:34:56", SPP_UUID)
        sock.connect.assert_called_once_with(("86:67:7A:12:34:56", 3))
        self.assertEqual(sock.settimeout.call_args_list, [mock.call(4.0), mock.call(None)])
        self.assertIsInstance(channel, RfcommSocket)
        self.assertEqual(channel.channel, 3)

    def test_lookup_failure_opens_no_socket(self) -> None:
        factory = mock.Mock()
        platform = BlueZPlatform(
            socket_factory=factory,
            service_lookup=mock.Mock(side_effect=OSError("no record")),
        )
        with self.assertRaises(OSError):
            platform.open_service_channel("86:67:7A:12:34:56", SPP_UUID)
        factory.assert_not_called()

    def test_fixed_channel_closes_socket_on_failure(self) -> None:
        sock = mock.Mock()
        sock.connect.side_effect = OSError(112, "Host is down")
        platform = BlueZPlatform(socket_factory=lambda: sock)
        with self.assertRaises(OSError):
            platform.open_fixed_channel("86:67:7A:12:34:56", 1)
        sock.connect.assert_called_once_with(("86:67:7A:12:34:56", 1))
        sock.close.assert_called_once_with()


class RfcommSocketTests(unittest.TestCase):
    def test_connected_while_peer_known(self) -> None:
        sock = mock.Mock()
        sock.fileno.return_value = 7
        self.assertTrue(RfcommSocket(sock, "86:67:7A:12:34:56", 1).is_connected())

    def test_not_connected_after_peer_drops(self) -> None:
        sock = mock.Mock()
        sock.fileno.return_value = 7
        sock.getpeername.side_effect = OSError(107, "Transport endpoint is not connected")
        self.assertFalse(RfcommSocket(sock, "86:67:7A:12:34:56", 1).is_connected())

    def test_not_connected_after_close(self) -> None:
        sock = mock.Mock()
        sock.fileno.return_value = -1
        self.assertFalse(RfcommSocket(sock, "86:67:7A:12:34:56", 1).is_connected())
        sock.getpeername.assert_not_called()

    def test_output_stream_is_binary_writer(self) -> None:
        sock = mock.Mock()
        stream = RfcommSocket(sock, "86:67:7A:12:34:56", 1).output_stream()
        sock.makefile.assert_called_once_with("wb")
        self.assertIs(stream, sock.makefile.return_value)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
