"""
PLC Link CLI Console
====================
Command-line interface for operator interaction with the link.
Supports:

  - Connection management (connect, disconnect, TCP/UDP switch)
  - Parameter editing and display
  - Command issue (one-shot and sticky "jog" commands)
  - Status display (flags, integers, command echo)
  - Link settings, transmit interval, manual send
  - Protocol history

Usage:
  python -m console.cli              # Interactive mode against a loopback simulator
  python -m console.cli --no-sim     # Interactive mode, connect manually
"""

import argparse
import cmd
import logging

from plclink.config.register_map import (
    PARAMETER_SLOTS,
    STATUS_FLAG_NAMES,
    STATUS_VALUE_NAMES,
)
from plclink.config.settings import Settings
from plclink.core.controller import LinkController
from plclink.core.events import ControlGroup

logger = logging.getLogger(__name__)


def _on_off(value: bool) -> str:
    return "ON" if value else "OFF"


class LinkConsole(cmd.Cmd):
    """Interactive CLI for the PLC link."""

    intro = (
        "\n"
        "╔══════════════════════════════════════════════════════╗\n"
        "║  PLC Link — Operator Console                        ║\n"
        "║  32-byte parameters out / 26-byte status in         ║\n"
        "║  Type 'help' for commands, 'quit' to exit           ║\n"
        "╚══════════════════════════════════════════════════════╝\n"
    )
    prompt = "LINK> "

    def __init__(self, controller: LinkController, stdout=None):
        super().__init__(stdout=stdout)
        self.ctrl = controller
        self._unsubscribe = [
            controller.connection_status_changed.subscribe(self._on_connection),
            controller.command_resolved.subscribe(self._on_resolved),
        ]

    def _print(self, text: str = ""):
        self.stdout.write(text + "\n")

    def _on_connection(self, status):
        if not status.connected and status.error:
            self._print(f"\n*** Connection lost: {status.error}")

    def _on_resolved(self, resolved):
        kind = "active" if resolved.sticky else "completed"
        self._print(
            f"\n*** Command {resolved.label or '-'} (ID: {resolved.command_id}) "
            f"acknowledged, {kind}"
        )

    # ── Connection Commands ──────────────────────────────────

    def do_connect(self, arg):
        """Connect with the current settings: connect"""
        self._print(self.ctrl.cmd_connect())

    def do_disconnect(self, arg):
        """Disconnect from the PLC: disconnect"""
        self._print(self.ctrl.cmd_disconnect())

    def do_protocol(self, arg):
        """Switch transport (disconnects first): protocol <tcp|udp>"""
        if not arg.strip():
            self._print(f"Current protocol: {self.ctrl.protocol.upper()}")
            return
        self._print(self.ctrl.cmd_protocol(arg))

    def do_tcp(self, arg):
        """Set TCP endpoint: tcp <host> <port> [client_port]"""
        parts = arg.split()
        if len(parts) not in (2, 3):
            self._print("Usage: tcp <host> <port> [client_port]")
            return
        self._apply({
            "tcp_host": parts[0],
            "tcp_port": parts[1],
            "tcp_client_port": parts[2] if len(parts) == 3 else 0,
            "protocol": "tcp",
        })

    def do_udp(self, arg):
        """Set UDP endpoints: udp <listen_port> <target_host> <target_port>"""
        parts = arg.split()
        if len(parts) != 3:
            self._print("Usage: udp <listen_port> <target_host> <target_port>")
            return
        self._apply({
            "udp_listen_port": parts[0],
            "udp_target_host": parts[1],
            "udp_target_port": parts[2],
            "protocol": "udp",
        })

    def _apply(self, updates: dict):
        bad = self.ctrl.settings.update_many(updates)
        if bad is not None:
            self._print(f"Invalid value for {bad}: {updates[bad]}")
            return
        self.ctrl.configure(self.ctrl.settings.connection_config())
        self._print(f"Endpoint set: {self.ctrl.config.describe()}")

    # ── Parameter Commands ───────────────────────────────────

    def do_set(self, arg):
        """Set an outbound parameter: set <slot|name> <value>"""
        parts = arg.split()
        if len(parts) != 2:
            self._print("Usage: set <slot|name> <value>")
            return
        slot, value = parts
        try:
            value = int(value)
        except ValueError:
            self._print(f"Invalid parameter: value must be an integer: {value}")
            return
        self._print(self.ctrl.cmd_set_parameter(slot, value))

    def do_params(self, arg):
        """Show outbound parameters: params"""
        values = self.ctrl.store.snapshot_for_send()
        self._print("\n── Outbound Parameters ──────────────────────────")
        for slot in PARAMETER_SLOTS:
            marker = " (command)" if slot.is_command else ""
            self._print(f"  [{slot.index:2d}] {slot.name:<18s} {values[slot.index]:>6d}{marker}")
        self._print()

    # ── Command Commands ─────────────────────────────────────

    def do_cmd(self, arg):
        """Issue a one-shot command: cmd <id> [label]"""
        self._issue(arg, sticky=False, source=ControlGroup.COMMAND_BUTTONS)

    def do_jog(self, arg):
        """Issue a sticky command (stays active after ack): jog <id> [label]"""
        self._issue(arg, sticky=True, source=ControlGroup.COMMAND_BUTTONS)

    def do_power(self, arg):
        """Issue a power-switch command: power <id> [label]"""
        self._issue(arg, sticky=False, source=ControlGroup.POWER_SWITCHES)

    def _issue(self, arg, sticky: bool, source: ControlGroup):
        parts = arg.split(None, 1)
        if not parts:
            self._print("Usage: <id> [label]")
            return
        try:
            command_id = int(parts[0])
        except ValueError:
            self._print(f"Invalid command: id must be an integer: {parts[0]}")
            return
        controls = self.ctrl.engine.controls
        if not controls.allows(source, command_id):
            self._print(f"{source.value.replace('_', ' ').title()} are disabled")
            return
        label = parts[1] if len(parts) > 1 else ""
        self._print(self.ctrl.cmd_issue(command_id, label, sticky, source))

    def do_controls(self, arg):
        """Show which controls are enabled: controls"""
        controls = self.ctrl.engine.controls
        self._print("\n── Controls ─────────────────────────────────────")
        for group in ControlGroup:
            state = "ENABLED" if controls.is_enabled(group) else "DISABLED"
            self._print(f"  {group.value:<18s} {state}")
        self._print(f"  Active command:    {controls.active_command or '-'}")
        self._print(f"  Waiting for ack:   {'YES' if controls.waiting else 'NO'}")
        self._print()

    # ── Status Commands ──────────────────────────────────────

    def do_status(self, arg):
        """Show link status: status"""
        s = self.ctrl.get_status()
        self._print("\n── Link Status ──────────────────────────────────")
        self._print(f"  Connected:      {'YES' if s['connected'] else 'NO'}")
        self._print(f"  Endpoint:       {s['endpoint']}")
        self._print(f"  Session:        {s['session_state']}")
        if s["last_error"]:
            self._print(f"  Last Error:     {s['last_error']}")
        self._print()
        self._print("── Transmit ─────────────────────────────────────")
        self._print(f"  Auto Send:      {_on_off(s['auto_send'])}")
        self._print(f"  Interval:       {s['send_interval_ms']} ms")
        self._print(f"  Ticks:          {s['tick_count']} (skipped: {s['ticks_skipped']})")
        self._print(f"  Frames Sent:    {s['frames_sent']}")
        self._print(f"  Mean Interval:  {s['mean_interval_ms']} ms")
        self._print()
        self._print("── Receive ──────────────────────────────────────")
        self._print(f"  Frames Rcvd:    {s['frames_received']}")
        self._print(f"  Frames Dropped: {s['frames_dropped']}")
        self._print(f"  Command Echo:   {s['command_echo'] if s['has_status'] else '-'}")
        self._print()
        self._print("── Command ──────────────────────────────────────")
        self._print(f"  State:          {s['command_state']}")
        self._print(f"  Register:       {s['command_register']}")
        self._print(f"  Pending:        {s['pending_command'] or '-'}")
        self._print(f"  Active:         {s['active_command'] or '-'}")
        self._print()

    def do_flags(self, arg):
        """Show status flags: flags [filter]"""
        snapshot = self.ctrl.store.latest_status()
        if snapshot is None:
            self._print("No status received yet")
            return
        filter_str = arg.strip().upper()
        self._print("\n── Status Flags ─────────────────────────────────")
        for index, name in enumerate(STATUS_FLAG_NAMES):
            if filter_str and filter_str not in name:
                continue
            self._print(f"  {name:<14s} {_on_off(snapshot.flags[index])}")
        self._print()

    def do_values(self, arg):
        """Show status integers: values"""
        snapshot = self.ctrl.store.latest_status()
        if snapshot is None:
            self._print("No status received yet")
            return
        self._print("\n── Status Values ────────────────────────────────")
        for index, name in enumerate(STATUS_VALUE_NAMES):
            self._print(f"  {name:<14s} {snapshot.values[index]:>6d}")
        self._print()

    def do_history(self, arg):
        """Show protocol history: history [kind|clear]"""
        kind = arg.strip().upper()
        if kind == "CLEAR":
            self.ctrl.history.clear()
            self._print("History cleared")
            return
        entries = self.ctrl.history.entries(kind or None)
        if not entries:
            self._print("No history")
            return
        for entry in entries:
            self._print(entry.format())

    # ── Settings Commands ────────────────────────────────────

    def do_settings(self, arg):
        """Show all link settings: settings [filter]"""
        filter_str = arg.strip().lower()
        self._print("\n── Link Settings ────────────────────────────────")
        for key, val in sorted(self.ctrl.settings.as_dict().items()):
            if filter_str and filter_str not in key:
                continue
            self._print(f"  {key:<25s} = {val}")
        self._print()

    def do_setting(self, arg):
        """Update a link setting: setting <key> <value>"""
        parts = arg.split(None, 1)
        if len(parts) != 2:
            self._print("Usage: setting <key> <value>")
            return
        self._print(self.ctrl.cmd_update_setting(parts[0], parts[1].strip()))

    def do_interval(self, arg):
        """Set transmit interval: interval <ms>"""
        try:
            self.ctrl.set_send_interval(int(arg))
        except ValueError:
            self._print("Usage: interval <ms>  (ms >= 1)")
            return
        self._print(f"Send interval set to {int(arg)} ms")

    def do_autosend(self, arg):
        """Enable or disable the transmit loop: autosend <on|off>"""
        value = arg.strip().lower()
        if value not in ("on", "off"):
            self._print(f"Auto send is {_on_off(self.ctrl.settings.auto_send)}")
            return
        self.ctrl.set_auto_send(value == "on")
        self._print(f"Auto send {value.upper()}")

    def do_send(self, arg):
        """Send one parameter frame now: send"""
        self._print(self.ctrl.cmd_send_once())

    def do_save(self, arg):
        """Save link settings to disk: save [path]"""
        path = arg.strip() or None
        self._print(self.ctrl.cmd_save_settings(path))

    def do_load(self, arg):
        """Load link settings from disk (disconnects): load [path]"""
        path = arg.strip() or None
        self.ctrl.apply_settings(Settings.load(path))
        self._print("Settings loaded")

    # ── Utility ──────────────────────────────────────────────

    def do_quit(self, arg):
        """Exit the console: quit"""
        self._print("Shutting down...")
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        return True

    def do_exit(self, arg):
        """Exit the console: exit"""
        return self.do_quit(arg)

    do_EOF = do_quit

    def emptyline(self):
        pass

    def default(self, line):
        self._print(f"Unknown command: {line}. Type 'help' for available commands.")


def run_cli(controller: LinkController):
    """Launch the interactive CLI console."""
    console = LinkConsole(controller)
    try:
        console.cmdloop()
    except KeyboardInterrupt:
        print("\nInterrupted.")


def main():
    """Entry point for standalone CLI usage."""
    from plclink.drivers.simulator import PLCSimulator
    from plclink.drivers.transport import TcpConfig

    parser = argparse.ArgumentParser(description="PLC link operator console")
    parser.add_argument("--no-sim", action="store_true",
                        help="Do not start the loopback PLC simulator")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    controller = LinkController()
    sim = None
    if not args.no_sim:
        sim = PLCSimulator()
        port = sim.start_tcp()
        controller.configure(TcpConfig(host="127.0.0.1", port=port))

    try:
        run_cli(controller)
    finally:
        controller.close()
        if sim:
            sim.stop()


if __name__ == "__main__":
    main()
