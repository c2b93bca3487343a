"""
Telegram bot front-end.

Talks to the Bot API directly over aiohttp: ``getUpdates`` long polling for
commands and ``sendMessage`` for replies and alerts. A chat that subscribes to
a node is registered with the alert engine as channel ``telegram:<chat_id>``.
"""

import asyncio
import datetime
import logging
import math
from typing import Any, Dict, List, Optional

import aiohttp

from .config import MIN_PUBKEY_LENGTH, TELEGRAM_API_URL, TELEGRAM_POLL_TIMEOUT_SECONDS, WEBHOOK_TIMEOUT_SECONDS

log = logging.getLogger("PodMonitor.TelegramBot")


def format_bytes(num_bytes) -> str:
    if not num_bytes:
        return '0 B'
    sizes = ['B', 'KB', 'MB', 'GB', 'TB', 'PB']
    i = max(0, min(int(math.floor(math.log(num_bytes, 1024))), len(sizes) - 1))
    value = round(num_bytes / (1024 ** i), 2)
    return f"{value:g} {sizes[i]}"


def format_uptime(seconds) -> str:
    if not seconds:
        return 'N/A'
    seconds = int(seconds)
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_number(value) -> str:
    return f"{int(value or 0):,}"


def _status_emoji(ratio) -> str:
    ratio = ratio or 0
    return '🟢' if ratio >= 80 else '🟡' if ratio >= 50 else '🔴'


def _fixed(value, digits: int = 1) -> str:
    return f"{value:.{digits}f}" if value is not None else 'N/A'


def _bot_url(api_url: str, token: str, method: str) -> str:
    return f"{api_url}/bot{token}/{method}"


async def send_telegram_message(token: str, chat_id, text: str, api_url: str = TELEGRAM_API_URL,
                                session: Optional[aiohttp.ClientSession] = None) -> bool:
    """POST one message to a chat. Returns False instead of raising on delivery failure."""
    payload = {'chat_id': chat_id, 'text': text, 'disable_web_page_preview': True}
    url = _bot_url(api_url, token, 'sendMessage')
    try:
        if session is not None:
            async with session.post(url, json=payload) as response:
                response.raise_for_status()
        else:
            timeout = aiohttp.ClientTimeout(total=WEBHOOK_TIMEOUT_SECONDS)
            async with aiohttp.ClientSession(timeout=timeout) as own_session:
                async with own_session.post(url, json=payload) as response:
                    response.raise_for_status()
        return True
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        log.error(f"Failed to send Telegram message to {chat_id}: {e}")
        return False


class TelegramBot:
    def __init__(self, token: str, alert_engine, persistence, collector,
                 api_url: str = TELEGRAM_API_URL,
                 poll_timeout: int = TELEGRAM_POLL_TIMEOUT_SECONDS):
        self.token = token
        self.alert_engine = alert_engine
        self.persistence = persistence
        self.collector = collector
        self.api_url = api_url
        self.poll_timeout = poll_timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self.offset = 0
        self.commands = {
            '/start': self.cmd_start,
            '/help': self.cmd_help,
            '/stats': self.cmd_stats,
            '/versions': self.cmd_versions,
            '/compare': self.cmd_compare,
            '/top': self.cmd_top,
            '/node': self.cmd_node,
            '/subscribe': self.cmd_subscribe,
            '/unsubscribe': self.cmd_unsubscribe,
            '/mysubs': self.cmd_mysubs,
        }

    @property
    def networks(self) -> List[str]:
        return self.collector.networks

    async def start(self):
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.poll_timeout + 10)
            )
        log.info("Telegram bot initialized")

    async def stop(self):
        if self.session is not None:
            await self.session.close()
            self.session = None
        log.info("Telegram bot stopped")

    async def send_message(self, chat_id, text: str) -> bool:
        return await send_telegram_message(self.token, chat_id, text, self.api_url, self.session)

    async def get_updates(self) -> List[Dict[str, Any]]:
        params = {'offset': self.offset, 'timeout': self.poll_timeout}
        async with self.session.get(_bot_url(self.api_url, self.token, 'getUpdates'), params=params) as response:
            response.raise_for_status()
            data = await response.json()
        if not data.get('ok'):
            log.warning(f"getUpdates returned an error: {data.get('description')}")
            return []
        return data.get('result') or []

    async def poll_forever(self):
        """Long-poll for commands until cancelled."""
        await self.start()
        log.info("Telegram command polling started.")
        while True:
            try:
                for update in await self.get_updates():
                    self.offset = max(self.offset, update.get('update_id', 0) + 1)
                    await self.handle_update(update)
            except asyncio.CancelledError:
                log.info("Telegram polling cancelled.")
                break
            except Exception:
                log.error("Error in Telegram polling loop:", exc_info=True)
                await asyncio.sleep(5)

    async def handle_update(self, update: Dict[str, Any]):
        message = update.get('message') or {}
        text = (message.get('text') or '').strip()
        chat_id = (message.get('chat') or {}).get('id')
        if chat_id is None or not text.startswith('/'):
            return

        parts = text.split()
        command = parts[0].split('@')[0].lower()
        handler = self.commands.get(command)
        if handler is None:
            return
        try:
            reply = await handler(chat_id, parts[1:])
        except Exception:
            log.error(f"Error handling {command} for chat {chat_id}:", exc_info=True)
            reply = '❌ Something went wrong. Please try again.'
        if reply:
            await self.send_message(chat_id, reply)

    # --- Data helpers ---

    async def _latest_snapshots(self) -> List[Dict[str, Any]]:
        snapshots = await self.persistence.get_latest_snapshots()
        if snapshots:
            return snapshots
        # Storage may be down; fall back to the in-memory fleet view
        return [entry['snapshot'].to_dict() for entry in self.collector.fleet.networks.values() if entry]

    def _format_network_stats(self, data: Dict[str, Any]) -> str:
        return (
            f"{_status_emoji(data.get('online_ratio'))} {data['network']} Statistics\n\n"
            f"📈 Node Status:\n"
            f"• Total Nodes: {format_number(data.get('total_pods'))}\n"
            f"• Online: {format_number(data.get('online_nodes'))}\n"
            f"• Offline: {format_number(data.get('offline_nodes'))}\n"
            f"• Online Ratio: {data.get('online_ratio', 0)}%\n\n"
            f"💻 Resources:\n"
            f"• Avg CPU: {_fixed(data.get('avg_cpu'))}%\n"
            f"• Avg RAM: {_fixed(data.get('avg_ram'))}%\n"
            f"• Total Storage: {format_bytes(data.get('total_storage'))}\n"
            f"• Avg Uptime: {format_uptime(data.get('avg_uptime'))}\n\n"
            f"📡 Activity:\n"
            f"• Total Streams: {format_number(data.get('total_streams'))}\n"
            f"• Bytes Transferred: {format_bytes(data.get('total_bytes_transferred'))}\n\n"
            f"Last updated: {data.get('timestamp') or 'N/A'}"
        )

    # --- Commands ---

    async def cmd_start(self, chat_id, args: List[str]) -> str:
        return (
            "🌐 Pod Monitor Bot\n\n"
            "Welcome! I can help you monitor network nodes.\n\n"
            "Available Commands:\n"
            "/stats - Network overview (all networks)\n"
            "/stats <network> - Specific network stats\n"
            "/node <pubkey> - Check specific node\n"
            "/versions - Version distribution\n"
            "/compare - Compare all networks\n"
            "/top [network] - Top nodes by uptime\n"
            "/subscribe <pubkey> - Get alerts for a node\n"
            "/unsubscribe <pubkey> - Stop alerts\n"
            "/mysubs - List your subscriptions\n"
            "/help - Show this help\n\n"
            f"Networks: {', '.join(self.networks)}"
        )

    async def cmd_help(self, chat_id, args: List[str]) -> str:
        example = self.networks[0]
        return (
            "📖 Commands Guide\n\n"
            "Network Stats:\n"
            "/stats - All networks overview\n"
            f"/stats {example} - Specific network\n\n"
            "Node Monitoring:\n"
            "/node <pubkey> - Node details\n"
            "/subscribe <pubkey> - Alert when node goes down/up\n"
            "/unsubscribe <pubkey> - Remove alert\n"
            "/mysubs - Your subscriptions\n\n"
            "Analysis:\n"
            "/versions - Software version distribution\n"
            "/compare - Side-by-side network comparison\n"
            "/top - Top nodes by uptime"
        )

    async def cmd_stats(self, chat_id, args: List[str]) -> str:
        snapshots = await self._latest_snapshots()
        if not snapshots:
            return '❌ No data available. Please try again later.'

        if args:
            network = args[0].lower()
            data = next((s for s in snapshots if s['network'] == network), None)
            if data is None:
                return f'❌ Network "{network}" not found.\nAvailable: {", ".join(self.networks)}'
            return self._format_network_stats(data)

        lines = ['📊 Network Overview', '']
        total_nodes = total_online = 0
        for data in snapshots:
            online = data.get('online_nodes') or 0
            total = data.get('total_pods') or 0
            ratio = data.get('online_ratio') or 0
            total_nodes += total
            total_online += online
            lines.append(f"{_status_emoji(ratio)} {data['network']}: {online}/{total} online ({ratio}%)")
        lines.append('')
        lines.append(f"📈 Total: {total_online}/{total_nodes} nodes online")
        lines.append('')
        lines.append('Use /stats <network> for details')
        return '\n'.join(lines)

    async def cmd_versions(self, chat_id, args: List[str]) -> str:
        snapshots = await self._latest_snapshots()
        if not snapshots:
            return '❌ No data available.'
        if args:
            snapshots = [s for s in snapshots if s['network'] == args[0].lower()]

        lines = ['📦 Version Distribution', '']
        for data in snapshots:
            distribution = data.get('version_distribution') or {}
            if not distribution:
                continue
            lines.append(f"{data['network']}:")
            total = sum(distribution.values())
            ranked = sorted(distribution.items(), key=lambda item: item[1], reverse=True)
            for version, count in ranked[:5]:
                percent = count / total * 100
                bar = '█' * int(round(percent / 10))
                lines.append(f"  {version}: {count} ({percent:.1f}%) {bar}")
            lines.append('')
        return '\n'.join(lines).rstrip()

    async def cmd_compare(self, chat_id, args: List[str]) -> str:
        snapshots = await self._latest_snapshots()
        if not snapshots:
            return '❌ No data available.'
        lines = [
            '📊 Network Comparison',
            '',
            'Network   | Online | Total | Ratio | Storage',
            '----------|--------|-------|-------|--------',
        ]
        for data in snapshots:
            online = str(data.get('online_nodes') or 0).rjust(6)
            total = str(data.get('total_pods') or 0).rjust(5)
            ratio = f"{data.get('online_ratio') or 0}%".rjust(5)
            storage = format_bytes(data.get('total_storage')).rjust(8)
            lines.append(f"{data['network'].ljust(9)} | {online} | {total} | {ratio} | {storage}")
        return '\n'.join(lines)

    async def cmd_top(self, chat_id, args: List[str]) -> str:
        network = args[0].lower() if args else self.networks[0]
        if network not in self.networks:
            return f'❌ Network "{network}" not found.\nAvailable: {", ".join(self.networks)}'
        if self.collector.fleet.get(network) is None:
            return f'❌ No data for {network}.'

        nodes = [n for n in self.collector.fleet.node_results(network) if n.is_online and n.uptime]
        nodes.sort(key=lambda n: n.uptime or 0, reverse=True)
        if not nodes:
            return '❌ No online nodes found.'

        medals = ['🥇', '🥈', '🥉']
        lines = [f"🏆 Top 10 Nodes by Uptime ({network})", '']
        for index, node in enumerate(nodes[:10]):
            rank = medals[index] if index < len(medals) else f"{index + 1}."
            lines.append(f"{rank} {format_uptime(node.uptime)} - {(node.pubkey or node.address)[:12]}...")
        return '\n'.join(lines)

    async def cmd_node(self, chat_id, args: List[str]) -> str:
        key = args[0] if args else ''
        if len(key) < MIN_PUBKEY_LENGTH:
            return '❌ Please provide a valid pubkey.\nUsage: /node <pubkey>'

        node = self.collector.fleet.find_node(key)
        if node is None:
            return f'❌ Node not found with pubkey: {key[:20]}...'

        history = await self.persistence.get_node_history(node.address, '1h')
        stats = history[-1] if history else node.to_dict()
        status = stats.get('status') or node.status
        last_seen = 'N/A'
        if node.last_seen:
            last_seen = datetime.datetime.fromtimestamp(node.last_seen, tz=datetime.timezone.utc).isoformat()

        return (
            f"{'🟢' if status == 'online' else '🔴'} Node Details\n\n"
            f"Network: {node.network}\n"
            f"Pubkey: {(node.pubkey or '')[:20]}...\n"
            f"Address: {node.address}\n"
            f"Version: {stats.get('version') or node.registry_version or 'N/A'}\n\n"
            f"📊 Stats:\n"
            f"• Status: {status}\n"
            f"• CPU: {_fixed(stats.get('cpu'))}%\n"
            f"• RAM: {_fixed(stats.get('ram'))}%\n"
            f"• Storage: {format_bytes(stats.get('storage'))}\n"
            f"• Uptime: {format_uptime(stats.get('uptime'))}\n\n"
            f"📡 Activity:\n"
            f"• Active Streams: {format_number(stats.get('active_streams'))}\n"
            f"• Packets Recv: {format_number(stats.get('packets_received'))}\n"
            f"• Packets Sent: {format_number(stats.get('packets_sent'))}\n"
            f"• Peers: {format_number(stats.get('peers_count'))}\n\n"
            f"Last seen: {last_seen}"
        )

    async def cmd_subscribe(self, chat_id, args: List[str]) -> str:
        pubkey = args[0] if args else ''
        try:
            self.alert_engine.subscribe(f"telegram:{chat_id}", pubkey)
        except ValueError:
            return '❌ Please provide a valid pubkey.\nUsage: /subscribe <pubkey>'
        return (
            f"✅ Subscribed to alerts for node:\n{pubkey[:30]}...\n\n"
            "You'll be notified when this node goes online/offline."
        )

    async def cmd_unsubscribe(self, chat_id, args: List[str]) -> str:
        pubkey = args[0] if args else ''
        try:
            removed = self.alert_engine.unsubscribe(f"telegram:{chat_id}", pubkey)
        except ValueError:
            return '❌ Please provide a valid pubkey.\nUsage: /unsubscribe <pubkey>'
        if not removed:
            return '❌ No subscriptions found.'
        return f"✅ Unsubscribed from node:\n{pubkey[:30]}..."

    async def cmd_mysubs(self, chat_id, args: List[str]) -> str:
        subs = self.alert_engine.list_subscriptions(f"telegram:{chat_id}")
        if not subs:
            return '📭 You have no subscriptions.\n\nUse /subscribe <pubkey> to add one.'
        lines = ['📋 Your Subscriptions', '']
        lines.extend(f"{i}. {pubkey[:30]}..." for i, pubkey in enumerate(subs, start=1))
        lines.append('')
        lines.append(f"Total: {len(subs)} subscription(s)")
        return '\n'.join(lines)
