"""Writer module for the JSON dataset and the long-format CSV export."""

from kpi_official.writer.dataset_writer import dataset_to_frame, save_dataset, save_series_csv

__all__ = [
    "dataset_to_frame",
    "save_dataset",
    "save_series_csv",
]
