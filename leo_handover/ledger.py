"""
Handover Ledger

Append-only history of per-cycle scores, selections and handover events.
The ledger is the hand-off point to reporting: it exports pandas DataFrames,
builds a summary report and saves runs to disk.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .handover import HandoverEvent
from .scoring import Candidate, METRIC_FIELDS

logger = logging.getLogger(__name__)

EVENT_COLUMNS = ['cycle', 'previous_id', 'new_id', 'delta', 'previous_name', 'new_name']


class Ledger:
    """
    Append-only record of an engine run.

    Records are never modified once appended; the read accessors return
    copies or immutable views.
    """

    def __init__(self, candidates: Sequence[Candidate]):
        self.candidates = list(candidates)
        self._names = {c.id: c.name for c in self.candidates}
        self._records: List[Dict[str, Any]] = []
        self._events: List[HandoverEvent] = []

    def record_cycle(self, result) -> None:
        """Append the outcome of one control cycle."""
        record = {
            'cycle': result.cycle,
            'selected_id': result.selected_id,
            'selected_name': self._names[result.selected_id],
            'switched': result.switched,
            'predictor': result.predictor_used,
        }
        for i, c in enumerate(self.candidates):
            record[f'score_{c.id}'] = float(result.raw_scores[i])
            record[f'predicted_{c.id}'] = float(result.predicted_scores[i])
            metrics = result.metrics.get(c.id) if result.metrics else None
            if metrics is not None:
                for field_name in METRIC_FIELDS:
                    record[f'{field_name}_{c.id}'] = getattr(metrics, field_name)
        self._records.append(record)

    def record_event(self, event: HandoverEvent) -> None:
        self._events.append(event)

    @property
    def cycles(self) -> int:
        return len(self._records)

    @property
    def events(self) -> Tuple[HandoverEvent, ...]:
        return tuple(self._events)

    @property
    def handover_count(self) -> int:
        return len(self._events)

    @property
    def selections(self) -> List[int]:
        return [r['selected_id'] for r in self._records]

    def to_frame(self) -> pd.DataFrame:
        """Per-cycle records indexed by cycle."""
        if not self._records:
            return pd.DataFrame(columns=['selected_id', 'selected_name', 'switched', 'predictor'],
                                index=pd.Index([], name='cycle'))
        df = pd.DataFrame(self._records)
        df.set_index('cycle', inplace=True)
        return df

    def events_frame(self) -> pd.DataFrame:
        return pd.DataFrame([e.to_dict() for e in self._events], columns=EVENT_COLUMNS)

    def generate_report(self) -> Dict[str, Any]:
        """
        Summarise the run for reporting collaborators.

        Returns:
            Dictionary with run summary, dwell time per candidate, score
            statistics, uptime and the mean of the positive scores
        """
        n_cycles = self.cycles
        event_cycles = [e.cycle for e in self._events]
        gaps = np.diff(event_cycles) if len(event_cycles) > 1 else np.array([])

        report = {
            'run_summary': {
                'cycles': n_cycles,
                'handover_count': self.handover_count,
                'handovers_per_100_cycles': (100.0 * self.handover_count / n_cycles) if n_cycles else 0.0,
                'mean_cycles_between_handovers': float(gaps.mean()) if gaps.size else None,
                'final_selection': self._records[-1]['selected_id'] if self._records else None,
            },
            'dwell': {},
            'score_statistics': {},
        }
        if not n_cycles:
            return report

        df = self.to_frame()
        dwell_counts = df['selected_id'].value_counts()
        for c in self.candidates:
            count = int(dwell_counts.get(c.id, 0))
            report['dwell'][c.name] = {
                'cycles': count,
                'share_percent': 100.0 * count / n_cycles,
            }
            scores = df[f'score_{c.id}']
            report['score_statistics'][c.name] = {
                'min': float(scores.min()),
                'max': float(scores.max()),
                'mean': float(scores.mean()),
                'std': float(scores.std()),
            }

        snr_columns = [f'snr_db_{c.id}' for c in self.candidates if f'snr_db_{c.id}' in df.columns]
        if snr_columns:
            report['peak_snr_db'] = float(df[snr_columns].max().max())

        selected_scores = [df.at[cycle, f'score_{sel}'] for cycle, sel in df['selected_id'].items()]
        report['mean_selected_score'] = float(np.mean(selected_scores))

        # A cycle counts as up when at least one link scored above zero
        scores = df[[f'score_{c.id}' for c in self.candidates]].to_numpy(dtype=float)
        positive = scores[scores > 0]
        report['uptime_percent'] = 100.0 * float((scores > 0).any(axis=1).mean())
        report['mean_positive_score'] = float(positive.mean()) if positive.size else None

        logger.info("Ledger report generated")
        return report

    def save(self, output_dir: str = "handover_data", filename_prefix: str = "handover",
             config: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
        """
        Save the ledger as CSV files plus JSON metadata.

        Args:
            output_dir: Output directory path
            filename_prefix: Prefix for output filenames
            config: Configuration dictionary to embed in the metadata

        Returns:
            Dictionary mapping artefact to saved file path
        """
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        base_filename = f"{filename_prefix}_{timestamp}"

        saved_files = {}

        cycles_path = output_path / f"{base_filename}_cycles.csv"
        self.to_frame().to_csv(cycles_path)
        saved_files['cycles'] = str(cycles_path)

        events_path = output_path / f"{base_filename}_events.csv"
        self.events_frame().to_csv(events_path, index=False)
        saved_files['events'] = str(events_path)

        metadata = {
            'generation_timestamp': timestamp,
            'num_cycles': self.cycles,
            'num_handovers': self.handover_count,
            'candidates': [c.to_dict() for c in self.candidates],
            'report': self.generate_report(),
            'config': config,
        }
        metadata_path = output_path / f"{base_filename}_metadata.json"
        with open(metadata_path, 'w') as f:
            json.dump(metadata, f, indent=2, default=str)
        saved_files['metadata'] = str(metadata_path)

        logger.info(f"Ledger saved to {output_dir} as: {list(saved_files.keys())}")
        return saved_files
