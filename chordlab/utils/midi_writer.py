# Tệp: chordlab/utils/midi_writer.py
# (FINAL V2.0.0) - SAFE MIDI WRITER FOR VOICED PROGRESSIONS
#
# Mục tiêu:
# - Note / Program an toàn (clamp pitch, velocity, duration).
# - Track theo channel, event tick tuyệt đối -> delta time khi finalize.
# - write_voiced_progression: mỗi VoicedChord = 1 note / giọng,
#   kéo dài tới hợp âm kế tiếp (hợp âm cuối: beats_per_chord).

import os
from typing import Dict, List, Optional, Sequence

import mido

from chordlab.core.chord_model import VoicedChord


class MidiTrack:
    def __init__(self, mido_track: mido.MidiTrack, channel: int):
        self.mido_track = mido_track
        self.channel = channel
        self.events: List[Dict] = []
        self.mido_track.append(
            mido.MetaMessage("track_name", name=f"Channel {channel}", time=0)
        )

    def set_name(self, name: str):
        for msg in self.mido_track:
            if msg.type == "track_name":
                msg.name = name
                return
        self.mido_track.append(mido.MetaMessage("track_name", name=name, time=0))

    def _add_event(self, tick: int, message: mido.Message):
        self.events.append({"tick": int(tick), "message": message})

    def add_note(self, pitch: int, velocity: int, start_tick: int, duration_ticks: int):
        start_tick = int(start_tick)

        # duration luôn >= 1 tick
        try:
            duration_ticks = int(duration_ticks)
        except (TypeError, ValueError):
            duration_ticks = 1
        if duration_ticks <= 0:
            duration_ticks = 1

        pitch = max(0, min(127, int(pitch)))
        velocity = max(1, min(127, int(velocity)))

        self._add_event(
            start_tick,
            mido.Message("note_on", note=pitch, velocity=velocity, channel=self.channel),
        )
        self._add_event(
            start_tick + duration_ticks,
            mido.Message("note_off", note=pitch, velocity=0, channel=self.channel),
        )

    def set_program(self, program: int, tick: int = 0):
        self._add_event(
            int(tick),
            mido.Message(
                "program_change",
                program=max(0, min(127, int(program))),
                channel=self.channel,
            ),
        )

    def finalize(self):
        if not self.events:
            return
        # sort ổn định: note_off trước note_on cùng tick (nốt lặp lại không bị cắt)
        self.events.sort(key=lambda e: (e["tick"], e["message"].type != "note_off"))

        last_tick = 0
        for event in self.events:
            delta_tick = max(0, event["tick"] - last_tick)
            event["message"].time = delta_tick
            self.mido_track.append(event["message"])
            last_tick = event["tick"]
        self.events = []


class MidiWriter:
    def __init__(self, ppq: int = 480, tempo_bpm: float = 80.0):
        self.ppq = int(ppq)
        self.tempo_bpm = float(tempo_bpm) if tempo_bpm and tempo_bpm > 0 else 80.0
        self.mido_file = mido.MidiFile(type=1, ticks_per_beat=self.ppq)

        self.meta_track = self.mido_file.add_track()
        self.meta_track.append(
            mido.MetaMessage("time_signature", numerator=4, denominator=4, time=0)
        )

        self.tracks_by_channel: Dict[int, MidiTrack] = {}
        self._finalized = False

    def get_track(self, channel: int) -> MidiTrack:
        if channel not in self.tracks_by_channel:
            new_mido_track = self.mido_file.add_track()
            self.tracks_by_channel[channel] = MidiTrack(new_mido_track, channel)
        return self.tracks_by_channel[channel]

    def beats_to_ticks(self, beats: float) -> int:
        return int(round(float(beats) * self.ppq))

    def write_voiced_progression(
        self,
        voiced: Sequence[VoicedChord],
        beats_per_chord: float = 1.0,
        velocity: int = 80,
        program: int = 0,
        channel: int = 0,
        track_name: Optional[str] = None,
    ) -> MidiTrack:
        """Ghi cả progression lên 1 channel."""
        if not voiced:
            raise ValueError("write_voiced_progression needs at least one voiced chord")

        track = self.get_track(channel)
        if track_name:
            track.set_name(track_name)
        track.set_program(program, tick=0)

        ordered = sorted(voiced, key=lambda v: v.time_beats)
        for idx, chord in enumerate(ordered):
            start = self.beats_to_ticks(chord.time_beats)
            if idx + 1 < len(ordered):
                end = self.beats_to_ticks(ordered[idx + 1].time_beats)
            else:
                end = start + self.beats_to_ticks(beats_per_chord)
            for pitch in chord.voices_midi:
                track.add_note(pitch, velocity, start, end - start)
        return track

    def _apply_tempo(self):
        self.meta_track.append(
            mido.MetaMessage("set_tempo", tempo=mido.bpm2tempo(self.tempo_bpm), time=0)
        )

    def finalize(self) -> mido.MidiFile:
        if not self._finalized:
            self._apply_tempo()
            for _channel, track in self.tracks_by_channel.items():
                track.finalize()
            self._finalized = True
        return self.mido_file

    def save(self, path: str) -> str:
        folder = os.path.dirname(path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        self.finalize().save(path)
        return path
