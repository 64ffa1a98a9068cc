"""The cpu, cpuacct and memory subsystems of the cgroups v1 hierarchies."""