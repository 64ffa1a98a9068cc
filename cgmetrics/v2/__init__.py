"""The cpu, memory and io controllers of the cgroups v2 unified hierarchy."""