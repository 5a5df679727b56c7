#!/usr/bin/env python3

import requests
import argparse
import re
import time
from urllib.parse import urljoin, urlsplit

TOKEN_RE = re.compile(r'\?[^\s"]*')


class ChannelProxyClient:
    def __init__(self, base_url="http://localhost:3000", timeout=10):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    def get_playlist(self, channel, path="master.m3u8"):
        """Fetch a (rewritten) playlist for a channel"""
        response = requests.get(f"{self.base_url}/{channel}/{path}", timeout=self.timeout)
        response.raise_for_status()
        return response.text

    def fetch(self, url):
        """Fetch a URL taken from a rewritten playlist, routed to this client's proxy"""
        response = requests.get(self.localize(url), timeout=self.timeout, stream=True)
        size = 0
        for chunk in response.iter_content(chunk_size=65536):
            size += len(chunk)
        response.close()
        return response.status_code, response.headers.get("content-type", ""), size

    def localize(self, url):
        """Rewritten playlists carry the public host; point them at base_url instead"""
        parsed = urlsplit(url)
        if not parsed.scheme:
            return url
        target = f"{self.base_url}{parsed.path}"
        if parsed.query:
            target += f"?{parsed.query}"
        return target

    @staticmethod
    def uri_lines(playlist):
        return [line.strip() for line in playlist.splitlines()
                if line.strip() and not line.strip().startswith('#')]

    def format_bytes(self, bytes_count):
        """Format bytes in human readable format"""
        for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
            if bytes_count < 1024:
                return f"{bytes_count:.1f} {unit}"
            bytes_count /= 1024
        return f"{bytes_count:.1f} PB"

    def probe(self, channel):
        """Walk master playlist -> first variant -> first segment and report each hop"""
        print("=" * 60)
        print(f"PROBE - {channel}")
        print("=" * 60)

        master_url = f"{self.base_url}/{channel}/master.m3u8"
        master = self.get_playlist(channel)
        uris = self.uri_lines(master)
        print(f"Master: {len(master)} chars, {len(uris)} URIs")
        if not uris:
            print("  No URIs found in master playlist")
            return

        variant_url = self.localize(urljoin(master_url, uris[0]))
        print(f"Variant: {variant_url}")
        response = requests.get(variant_url, timeout=self.timeout)
        print(f"  Status: {response.status_code}")
        segments = self.uri_lines(response.text)
        print(f"  Segments listed: {len(segments)}")
        if not segments:
            return

        segment_url = urljoin(variant_url, segments[0])
        status, content_type, size = self.fetch(segment_url)
        print(f"Segment: {segment_url}")
        print(f"  Status: {status}")
        print(f"  Content-Type: {content_type}")
        print(f"  Size: {self.format_bytes(size)}")


def main():
    parser = argparse.ArgumentParser(description="hls-channel-proxy client")
    parser.add_argument("--base-url", default="http://localhost:3000",
                        help="Base URL of the proxy server")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    playlist_parser = subparsers.add_parser("playlist", help="Print a rewritten playlist")
    playlist_parser.add_argument("channel", help="Channel key")
    playlist_parser.add_argument("--path", default="master.m3u8", help="Playlist path within the channel")

    probe_parser = subparsers.add_parser("probe", help="Fetch master, first variant and first segment")
    probe_parser.add_argument("channel", help="Channel key")

    monitor_parser = subparsers.add_parser("monitor", help="Watch the token carried by a channel's playlist")
    monitor_parser.add_argument("channel", help="Channel key")
    monitor_parser.add_argument("--interval", type=float, default=15.0, help="Seconds between fetches")

    args = parser.parse_args()

    client = ChannelProxyClient(args.base_url)

    try:
        if args.command == "playlist":
            print(client.get_playlist(args.channel, args.path))

        elif args.command == "probe":
            client.probe(args.channel)

        elif args.command == "monitor":
            print(f"Monitoring {args.channel} (Press Ctrl+C to stop)...")
            last_token = None
            try:
                while True:
                    playlist = client.get_playlist(args.channel)
                    match = TOKEN_RE.search(playlist)
                    token = match.group(0) if match else None
                    stamp = time.strftime('%H:%M:%S')
                    if token != last_token:
                        print(f"[{stamp}] token changed: {token}")
                        last_token = token
                    else:
                        print(f"[{stamp}] token unchanged")
                    time.sleep(args.interval)
            except KeyboardInterrupt:
                print("\nMonitoring stopped.")

        else:
            parser.print_help()

    except requests.RequestException as e:
        print(f"Error: {e}")


if __name__ == "__main__":
    main()
