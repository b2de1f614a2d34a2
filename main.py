import os

# FORCE NUMPY TO USE 1 THREAD PER PROCESS
os.environ["OMP_NUM_THREADS"] = "1"
os.environ["OPENBLAS_NUM_THREADS"] = "1"
os.environ["MKL_NUM_THREADS"] = "1"

import numpy as np
import pandas as pd
import time
import platform

import simulate_outcross
import outcross_data
import twopoint
import marker_sequence
import record_ordering
import linkage_pipeline

if platform.system() != "Windows":
    os.nice(15)
    print(f"Main process ({os.getpid()}) niceness set to: {os.nice(0)}")

pd.set_option('display.max_columns', None)
pd.set_option('display.max_rows', None)

#%%
num_markers = 120
num_individuals = 250
segregation_types = ["A.1", "B3.7", "D1.10", "A.1", "D2.15", "B1.5"]

types = [segregation_types[i % len(segregation_types)] for i in range(num_markers)]

(data, true_phases) = simulate_outcross.simulate_linkage_group(
    num_markers, num_individuals,
    rf=0.04,
    segr_type=types,
    missing_rate=0.05,
    seed=42)
print(data)

#%%
bins = outcross_data.find_bins(data, exact=False)
binned = outcross_data.create_data_bins(data, bins)
print(f"Bins: {data.n_mar} markers -> {binned.n_mar} representatives")

#%%
start = time.time()
twopt = twopoint.rf_2pts(binned, cores=16, verbose=True)
print("Time taken:", time.time() - start)

#%%
# Shuffle the markers so the seed order has something to do
rng = np.random.default_rng(7)
shuffled = [int(m) for m in rng.permutation(binned.n_mar)]
input_seq = marker_sequence.make_seq(binned, shuffled, twopt=twopt)

start = time.time()
final_map = linkage_pipeline.build_linkage_map(
    input_seq,
    seed_order=record_ordering.make_record_seed(binned, twopt, seed=1),
    seed_replicates=20,
    seed_cores=8,
    size=40,
    overlap=10,
    around=5,
    ripple_window=4,
    ripple_rule="one",
    batch_cores=4,
    phase_cores=4,
    verbose=True)
print("Time taken:", time.time() - start)

#%%
print(final_map.to_dataframe())
print(f"Map length: {final_map.length_cm:.2f} cM")
