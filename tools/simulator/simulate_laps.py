#!/usr/bin/env python3
"""Lap timer circuit simulator.

Drives a simulated phone around a closed circuit and streams its GPS fixes
to the lap timer server, then stops the session and prints the laps the
server detected. Fixes carry simulated timestamps, so a ten-lap session
replays in seconds.

Usage:
    # Three laps of a generated 400 m oval, finish line at the first waypoint
    python -m tools.simulator.simulate_laps --server http://localhost:8000 --laps 3

    # A recorded circuit (JSON: {"circuit_name", "waypoints": [{"lat", "lon"}, ...]})
    python -m tools.simulator.simulate_laps --circuit circuits/kart_track.json \
        --laps 5 --speed-kmh 45 --noise-m 1.5
"""

from __future__ import annotations

import argparse
import asyncio
import json
import math
import random
import time
from dataclasses import dataclass
from pathlib import Path

import httpx


# ---------------------------------------------------------------------------
# GPS math helpers
# ---------------------------------------------------------------------------

def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in metres between two lat/lon points (Haversine)."""
    R = 6_371_000
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dp = math.radians(lat2 - lat1)
    dl = math.radians(lon2 - lon1)
    a = math.sin(dp / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return R * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def interpolate_point(
    lat1: float, lon1: float, lat2: float, lon2: float, fraction: float
) -> tuple[float, float]:
    """Linearly interpolate between two GPS points (good enough for <100 m)."""
    return (
        lat1 + (lat2 - lat1) * fraction,
        lon1 + (lon2 - lon1) * fraction,
    )


# ---------------------------------------------------------------------------
# Circuit model
# ---------------------------------------------------------------------------

@dataclass
class Circuit:
    name: str
    waypoints: list[tuple[float, float]]

    @property
    def total_distance_m(self) -> float:
        pts = self.waypoints + self.waypoints[:1]
        return sum(haversine_m(*a, *b) for a, b in zip(pts, pts[1:]))

    @classmethod
    def from_json(cls, path: str | Path) -> "Circuit":
        raw = json.loads(Path(path).read_text())
        return cls(
            name=raw.get("circuit_name", Path(path).stem),
            waypoints=[(w["lat"], w["lon"]) for w in raw["waypoints"]],
        )

    @classmethod
    def oval(cls, center_lat: float, center_lon: float,
             radius_m: float = 60.0, points: int = 72) -> "Circuit":
        """A circle-ish loop; waypoint 0 (the finish line) is due south."""
        m_per_deg_lat = 111_320.0
        m_per_deg_lon = 111_320.0 * math.cos(math.radians(center_lat))
        wps = []
        for i in range(points):
            theta = -math.pi / 2 + 2 * math.pi * i / points
            wps.append((
                center_lat + radius_m * math.sin(theta) / m_per_deg_lat,
                center_lon + radius_m * math.cos(theta) / m_per_deg_lon,
            ))
        return cls(name=f"oval {radius_m:.0f} m", waypoints=wps)


# ---------------------------------------------------------------------------
# Driver simulation
# ---------------------------------------------------------------------------

@dataclass
class Driver:
    circuit: Circuit
    speed_kmh: float
    noise_m: float
    wp_idx: int = 0
    progress_m: float = 0.0
    laps_completed: int = 0

    def advance(self, dt_seconds: float) -> tuple[float, float]:
        """Move along the circuit and return a noisy (lat, lon) fix."""
        wps = self.circuit.waypoints
        speed_mps = self.speed_kmh / 3.6 * random.uniform(0.9, 1.1)
        self.progress_m += speed_mps * dt_seconds

        while True:
            a = wps[self.wp_idx]
            b = wps[(self.wp_idx + 1) % len(wps)]
            seg = haversine_m(*a, *b)
            if self.progress_m < seg:
                break
            self.progress_m -= seg
            self.wp_idx = (self.wp_idx + 1) % len(wps)
            if self.wp_idx == 0:
                self.laps_completed += 1

        lat, lon = interpolate_point(*a, *b, self.progress_m / max(seg, 0.01))
        noise_lat = random.gauss(0, self.noise_m) / 111_000
        noise_lon = random.gauss(0, self.noise_m) / (111_000 * math.cos(math.radians(lat)))
        return lat + noise_lat, lon + noise_lon


# ---------------------------------------------------------------------------
# Network & main loop
# ---------------------------------------------------------------------------

async def run_simulation(args: argparse.Namespace) -> None:
    if args.circuit:
        circuit = Circuit.from_json(args.circuit)
    else:
        circuit = Circuit.oval(args.lat, args.lon, radius_m=args.radius_m)

    driver = Driver(circuit=circuit, speed_kmh=args.speed_kmh, noise_m=args.noise_m)
    finish_lat, finish_lon = circuit.waypoints[0]
    interval_s = args.interval_ms / 1000

    print(f"Circuit: {circuit.name}")
    print(f"  Distance: {circuit.total_distance_m:.0f} m per lap")
    print(f"  Waypoints: {len(circuit.waypoints)}")
    print(f"  Laps: {args.laps} at ~{args.speed_kmh:.0f} km/h")
    print(f"  Server: {args.server}")
    print()

    sim_time_ms = int(time.time() * 1000)
    sent = 0
    async with httpx.AsyncClient(base_url=args.server, timeout=10.0) as client:
        resp = await client.post("/api/v1/tracking/start", json={
            "finishLine": {"latitude": finish_lat, "longitude": finish_lon},
            "sessionName": args.name,
        })
        resp.raise_for_status()
        print(f"Session {resp.json()['session_id']} started")

        # Overshoot slightly so the final crossing is seen before stopping.
        while driver.laps_completed < args.laps or driver.progress_m < 20:
            batch = []
            for _ in range(args.batch_size):
                lat, lon = driver.advance(interval_s)
                sim_time_ms += args.interval_ms
                batch.append({
                    "latitude": lat,
                    "longitude": lon,
                    "timestamp": sim_time_ms,
                    "accuracy": round(abs(random.gauss(3, 1)), 1),
                })
            resp = await client.post("/api/v1/tracking/positions", json={"positions": batch})
            resp.raise_for_status()
            sent += len(batch)
            for event in resp.json()["events"]:
                lap = event["completed_lap"]
                if lap:
                    print(f"  Lap {lap['lap_number']}: {lap['duration_ms'] / 1000:.2f} s")
                else:
                    print(f"  Crossed the line, lap {event['opened_lap_number']} started")

        resp = await client.post("/api/v1/tracking/stop", json={})
        resp.raise_for_status()
        result = resp.json()

    summary = result["view"]["summary"]
    fastest = result["view"]["fastest_lap"]
    print(f"\nSession stopped after {sent} fixes")
    print(f"  Laps recorded: {len(result['session']['laps'])}")
    print(f"  Fastest lap: {fastest['duration_ms'] / 1000:.2f} s" if fastest else "  Fastest lap: none")
    print(f"  Distance: {summary['distance_m']:.0f} m")
    print(f"  Avg/max speed: {summary['avg_speed_kmh']:.1f} / {summary['max_speed_kmh']:.1f} km/h")


def main():
    parser = argparse.ArgumentParser(description="Lap timer circuit simulator")
    parser.add_argument("--server", default="http://localhost:8000", help="Server URL")
    parser.add_argument("--circuit", help="Circuit JSON file (default: generated oval)")
    parser.add_argument("--lat", type=float, default=-23.7010, help="Oval center latitude")
    parser.add_argument("--lon", type=float, default=-46.6970, help="Oval center longitude")
    parser.add_argument("--radius-m", type=float, default=60.0, help="Oval radius in metres")
    parser.add_argument("--laps", type=int, default=3, help="Laps to drive (default: 3)")
    parser.add_argument("--speed-kmh", type=float, default=40.0, help="Average speed")
    parser.add_argument("--noise-m", type=float, default=1.0, help="GPS noise sigma in metres")
    parser.add_argument("--interval-ms", type=int, default=200, help="Fix interval")
    parser.add_argument("--batch-size", type=int, default=10, help="Fixes per request")
    parser.add_argument("--name", default="Simulated session", help="Session name")

    args = parser.parse_args()
    asyncio.run(run_simulation(args))


if __name__ == "__main__":
    main()
